from datetime import datetime
from decimal import Decimal
from pathlib import Path
import sys

import pyarrow as pa
import pytest
from opensearchpy.exceptions import TransportError
from opensearchpy.helpers import BulkIndexError

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import search_indexer.bulk_loader as bulk_loader
from search_indexer.bulk_loader import BulkLoader, iter_actions, merge_options
from search_indexer.errors import ConfigurationError, WriteFailureError
from search_indexer.settings import ClusterEndpoint


class _FakeIndices:
    def __init__(self, events):
        self.events = events

    def delete(self, index, ignore=None):
        self.events.append(("delete", index, tuple(ignore or ())))
        return {"acknowledged": True}

    def refresh(self, index, ignore=None):
        self.events.append(("refresh", index, tuple(ignore or ())))
        return {}


class _FakeClient:
    def __init__(self):
        self.events = []
        self.indices = _FakeIndices(self.events)


class _BulkRecorder:
    def __init__(self, error=None):
        self.actions = []
        self.kwargs = None
        self.error = error

    def __call__(self, client, actions, **kwargs):
        self.kwargs = kwargs
        client.events.append(("bulk",))
        for action in actions:
            self.actions.append(action)
        if self.error is not None:
            raise self.error
        for action in self.actions:
            yield True, {"index": {"_index": action["_index"], "status": 201}}


def _loader(monkeypatch, recorder):
    monkeypatch.setattr(bulk_loader, "streaming_bulk", recorder)
    client = _FakeClient()
    return BulkLoader(ClusterEndpoint(), client=client), client


def test_load_overwrites_index_before_bulk_write(monkeypatch):
    recorder = _BulkRecorder()
    loader, client = _loader(monkeypatch, recorder)
    table = pa.table({"id": ["c1", "c2"], "name": ["Ada", "Grace"]})

    written = loader.load(table, {"es.resource.write": "sales_customers"})

    assert written == 2
    assert client.events == [
        ("delete", "sales_customers", (404,)),
        ("bulk",),
        ("refresh", "sales_customers", (404,)),
    ]
    assert [action["_source"] for action in recorder.actions] == [
        {"id": "c1", "name": "Ada"},
        {"id": "c2", "name": "Grace"},
    ]
    assert all("_id" not in action for action in recorder.actions)
    assert recorder.kwargs["chunk_size"] == 1000
    assert recorder.kwargs["max_retries"] == 0


def test_load_uses_configured_id_field_and_batch_size(monkeypatch):
    recorder = _BulkRecorder()
    loader, client = _loader(monkeypatch, recorder)
    table = pa.table({"id": [7, 8], "name": ["Ada", "Grace"]})

    loader.load(
        table,
        {
            "es.resource.write": "sales_customers-20240101",
            "es.mapping.id": "id",
            "es.batch.size.entries": "50",
            "es.batch.write.refresh": "false",
        },
    )

    assert [action["_id"] for action in recorder.actions] == ["7", "8"]
    assert {action["_index"] for action in recorder.actions} == {"sales_customers-20240101"}
    assert recorder.kwargs["chunk_size"] == 50
    assert [event[0] for event in client.events] == ["delete", "bulk"]


def test_load_strips_document_type_from_resource(monkeypatch):
    recorder = _BulkRecorder()
    loader, client = _loader(monkeypatch, recorder)

    loader.load(pa.table({"a": [1]}), {"es.resource.write": "sales_customers/_doc"})

    assert client.events[0] == ("delete", "sales_customers", (404,))
    assert recorder.actions[0]["_index"] == "sales_customers"


def test_empty_dataset_still_replaces_index(monkeypatch):
    recorder = _BulkRecorder()
    loader, client = _loader(monkeypatch, recorder)

    written = loader.load(pa.table({}), {"es.resource.write": "sales_customers"})

    assert written == 0
    assert client.events[0] == ("delete", "sales_customers", (404,))
    assert recorder.actions == []


def test_missing_resource_is_a_configuration_error(monkeypatch):
    loader, client = _loader(monkeypatch, _BulkRecorder())

    with pytest.raises(ConfigurationError):
        loader.load(pa.table({"a": [1]}), {})

    assert client.events == []


def test_invalid_batch_size_is_a_configuration_error(monkeypatch):
    loader, _client = _loader(monkeypatch, _BulkRecorder())

    with pytest.raises(ConfigurationError):
        loader.load(pa.table({"a": [1]}), {"es.resource.write": "x", "es.batch.size.entries": "lots"})


def test_rejected_documents_raise_write_failure(monkeypatch):
    error = BulkIndexError("1 document(s) failed to index.", [{"index": {"status": 400, "error": "mapper_parsing"}}])
    loader, _client = _loader(monkeypatch, _BulkRecorder(error=error))

    with pytest.raises(WriteFailureError) as excinfo:
        loader.load(pa.table({"a": [1]}), {"es.resource.write": "sales_customers"})

    assert "1 document(s) failed" in str(excinfo.value)


def test_transport_failure_raises_write_failure(monkeypatch):
    loader, _client = _loader(monkeypatch, _BulkRecorder(error=TransportError(503, "unavailable", {})))

    with pytest.raises(WriteFailureError):
        loader.load(pa.table({"a": [1]}), {"es.resource.write": "sales_customers"})


def test_merge_options_prefers_job_keys():
    merged = merge_options(
        {"es.nodes": "es.local", "es.batch.size.entries": "500"},
        {"es.batch.size.entries": "10", "es.resource.write": "sales_customers"},
    )

    assert merged == {
        "es.nodes": "es.local",
        "es.batch.size.entries": "10",
        "es.resource.write": "sales_customers",
    }


def test_iter_actions_converts_values_to_json_compatible():
    table = pa.table(
        {
            "score": [float("nan"), 1.5],
            "price": pa.array([Decimal("9.99"), None], type=pa.decimal128(5, 2)),
            "seen": pa.array([datetime(2024, 1, 2, 3, 4, 5), None], type=pa.timestamp("s")),
            "tags": [["a", "b"], []],
        }
    )

    sources = [action["_source"] for action in iter_actions(table, "idx")]

    assert sources[0] == {"score": None, "price": 9.99, "seen": "2024-01-02T03:04:05", "tags": ["a", "b"]}
    assert sources[1] == {"score": 1.5, "price": None, "seen": None, "tags": []}


def test_iter_actions_skips_id_when_value_missing():
    table = pa.table({"id": ["a", None]})

    actions = list(iter_actions(table, "idx", "id"))

    assert actions[0]["_id"] == "a"
    assert "_id" not in actions[1]
