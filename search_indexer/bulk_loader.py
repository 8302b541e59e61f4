"""Write dataset rows into the target index, replacing what was there."""

import logging
import math
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, Optional

import pyarrow as pa
from opensearchpy import OpenSearch
from opensearchpy.exceptions import TransportError
from opensearchpy.helpers import BulkIndexError, streaming_bulk

from search_indexer.cluster import build_client
from search_indexer.errors import ConfigurationError, WriteFailureError
from search_indexer.settings import ClusterEndpoint, is_truthy_flag, mask_options

logger = logging.getLogger(__name__)

ES_RESOURCE_WRITE = "es.resource.write"
ES_MAPPING_ID = "es.mapping.id"
ES_BATCH_SIZE_ENTRIES = "es.batch.size.entries"
ES_BATCH_WRITE_REFRESH = "es.batch.write.refresh"

DEFAULT_BATCH_SIZE = 1000


def merge_options(global_options: dict[str, str], job_options: dict[str, str]) -> dict[str, str]:
    """Cluster defaults first, job options on top. Job keys win."""
    merged = dict(global_options)
    merged.update(job_options)
    return merged


def _to_json_compatible_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {str(k): _to_json_compatible_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_json_compatible_value(item) for item in value]

    isoformat_method = getattr(value, "isoformat", None)
    if callable(isoformat_method):
        return isoformat_method()
    return str(value)


def _index_name(resource: str) -> str:
    # es-hadoop style "index/_doc" resources.
    return resource.split("/", 1)[0]


def _batch_size(options: dict[str, str]) -> int:
    raw = options.get(ES_BATCH_SIZE_ENTRIES, str(DEFAULT_BATCH_SIZE))
    try:
        size = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid {ES_BATCH_SIZE_ENTRIES}: {raw!r}")
    return max(1, size)


def iter_actions(table: pa.Table, index_name: str, id_field: Optional[str] = None) -> Iterator[Dict[str, Any]]:
    for record in table.to_pylist():
        source = {str(key): _to_json_compatible_value(value) for key, value in record.items()}
        action: Dict[str, Any] = {"_index": index_name, "_source": source}
        if id_field and source.get(id_field) is not None:
            action["_id"] = str(source[id_field])
        yield action


class BulkLoader:
    def __init__(
        self,
        endpoint: ClusterEndpoint,
        client: Optional[OpenSearch] = None,
        client_factory: Callable[[ClusterEndpoint], OpenSearch] = build_client,
    ) -> None:
        self.endpoint = endpoint
        self._client = client
        self._client_factory = client_factory

    @property
    def client(self) -> OpenSearch:
        if self._client is None:
            self._client = self._client_factory(self.endpoint)
        return self._client

    def load(self, table: pa.Table, options: dict[str, str]) -> int:
        """Overwrite the target index with every row of ``table``.

        Args:
            table: Rows to write.
            options: Merged write options; ``es.resource.write`` is required.

        Returns:
            int: Number of documents written.

        Raises:
            WriteFailureError: Any document or transport failure.
        """
        resource = options.get(ES_RESOURCE_WRITE, "").strip()
        if not resource:
            raise ConfigurationError(f"Missing mandatory write option {ES_RESOURCE_WRITE}")
        index_name = _index_name(resource)
        id_field = options.get(ES_MAPPING_ID) or None
        chunk_size = _batch_size(options)
        refresh = is_truthy_flag(options.get(ES_BATCH_WRITE_REFRESH, "true"))

        logger.info(f"sending {table.num_rows} documents to Elasticsearch using {mask_options(options)}")
        written = 0
        try:
            self.client.indices.delete(index=index_name, ignore=[404])
            for ok, _item in streaming_bulk(
                self.client,
                iter_actions(table, index_name, id_field),
                chunk_size=chunk_size,
                max_retries=0,
                raise_on_error=True,
                raise_on_exception=True,
            ):
                if ok:
                    written += 1
            if refresh:
                self.client.indices.refresh(index=index_name, ignore=[404])
        except BulkIndexError as e:
            raise WriteFailureError(
                f"{len(e.errors)} document(s) failed while writing to {index_name}"
            ) from e
        except TransportError as e:
            raise WriteFailureError(f"Bulk write to {index_name} failed: {e}") from e

        logger.info(f"Wrote {written} documents to {index_name}")
        return written
