from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from search_indexer.errors import ConfigurationError
from search_indexer.settings import ClusterEndpoint, Settings, load_settings, mask_options


_ENV_NAMES = (
    "SEARCH_INDEXER_CONFIG",
    "SEARCH_INDEXER_METADATA",
    "SEARCH_INDEXER_DATASETS",
    "OPENSEARCH_HOST",
    "OPENSEARCH_PORT",
    "OPENSEARCH_USE_SSL",
    "OPENSEARCH_USER",
    "OPENSEARCH_PASSWORD",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def _write_settings(tmp_path, content):
    path = tmp_path / "settings.yml"
    path.write_text(content, encoding="utf-8")
    return path


def test_defaults_without_settings_file():
    settings = load_settings()

    assert settings == Settings()
    assert ClusterEndpoint.from_options(settings.elasticsearch_options) == ClusterEndpoint()


def test_settings_file_options_are_stringified(tmp_path):
    path = _write_settings(
        tmp_path,
        "metadata: /srv/metadata\n"
        "datasets: /srv/datasets\n"
        "elasticsearch:\n"
        "  options:\n"
        "    es.nodes: es.internal\n"
        "    es.port: 9243\n"
        "    es.net.ssl: true\n"
        "    es.batch.size.entries: 200\n"
        "    unused: null\n",
    )

    settings = load_settings(str(path))

    assert settings.metadata == "/srv/metadata"
    assert settings.datasets == "/srv/datasets"
    assert settings.elasticsearch_options == {
        "es.nodes": "es.internal",
        "es.port": "9243",
        "es.net.ssl": "true",
        "es.batch.size.entries": "200",
    }


def test_config_path_falls_back_to_environment(tmp_path, monkeypatch):
    path = _write_settings(tmp_path, "metadata: /from/env\n")
    monkeypatch.setenv("SEARCH_INDEXER_CONFIG", str(path))

    assert load_settings().metadata == "/from/env"


def test_environment_overrides_file_values(tmp_path, monkeypatch):
    path = _write_settings(
        tmp_path,
        "datasets: /srv/datasets\n"
        "elasticsearch:\n"
        "  options:\n"
        "    es.nodes: es.internal\n"
        "    es.port: 9200\n",
    )
    monkeypatch.setenv("OPENSEARCH_HOST", "es.override")
    monkeypatch.setenv("OPENSEARCH_USE_SSL", "true")
    monkeypatch.setenv("OPENSEARCH_USER", "admin")
    monkeypatch.setenv("OPENSEARCH_PASSWORD", "s3cret")
    monkeypatch.setenv("SEARCH_INDEXER_DATASETS", "/mnt/datasets")

    settings = load_settings(str(path))
    endpoint = ClusterEndpoint.from_options(settings.elasticsearch_options)

    assert settings.datasets == "/mnt/datasets"
    assert endpoint.host == "es.override"
    assert endpoint.port == 9200
    assert endpoint.ssl is True
    assert endpoint.auth == ("admin", "s3cret")
    assert endpoint.url("/_template/x") == "https://es.override:9200/_template/x"


def test_missing_settings_file_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        load_settings(str(tmp_path / "absent.yml"))


def test_non_mapping_settings_file_is_rejected(tmp_path):
    path = _write_settings(tmp_path, "- just\n- a list\n")

    with pytest.raises(ConfigurationError):
        load_settings(str(path))


def test_endpoint_takes_first_node_and_validates_port():
    endpoint = ClusterEndpoint.from_options(
        {"es.nodes": "node-a, node-b", "es.port": "9201", "es.net.ssl.cert.allow.self.signed": "true"}
    )

    assert endpoint.host == "node-a"
    assert endpoint.verify_certs is False
    with pytest.raises(ConfigurationError):
        ClusterEndpoint.from_options({"es.port": "ninety-two"})
    with pytest.raises(ConfigurationError):
        ClusterEndpoint.from_options({"es.http.timeout": "soon"})


def test_auth_requires_both_user_and_password():
    assert ClusterEndpoint.from_options({"net.http.auth.user": "admin"}).auth is None
    assert ClusterEndpoint.from_options({"net.http.auth.password": "x"}).auth is None


def test_mask_options_hides_passwords():
    masked = mask_options(
        {"net.http.auth.user": "admin", "net.http.auth.password": "s3cret", "es.net.http.auth.pass": "s3cret"}
    )

    assert masked == {
        "net.http.auth.user": "admin",
        "net.http.auth.password": "****",
        "es.net.http.auth.pass": "****",
    }
