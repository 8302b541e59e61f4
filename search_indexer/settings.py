"""Process-wide settings and the search cluster endpoint derived from them."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from search_indexer.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "SEARCH_INDEXER_CONFIG"

ES_NODES = "es.nodes"
ES_PORT = "es.port"
ES_NET_SSL = "es.net.ssl"
ES_AUTH_USER = "net.http.auth.user"
ES_AUTH_PASSWORD = "net.http.auth.password"
ES_HTTP_TIMEOUT = "es.http.timeout"
ES_SSL_ALLOW_SELF_SIGNED = "es.net.ssl.cert.allow.self.signed"

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 9200
DEFAULT_TIMEOUT_SECONDS = 10

# Environment variable -> option key.
_ENV_OPTION_OVERRIDES = {
    "OPENSEARCH_HOST": ES_NODES,
    "OPENSEARCH_PORT": ES_PORT,
    "OPENSEARCH_USE_SSL": ES_NET_SSL,
    "OPENSEARCH_USER": ES_AUTH_USER,
    "OPENSEARCH_PASSWORD": ES_AUTH_PASSWORD,
}


def is_truthy_flag(raw_value: str) -> bool:
    return str(raw_value).strip().lower() in {"1", "true", "yes", "on"}


def _stringify_options(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError("elasticsearch.options must be a mapping")
    options: dict[str, str] = {}
    for key, value in raw.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        options[str(key)] = str(value)
    return options


def mask_options(options: dict[str, str]) -> dict[str, str]:
    """Copy of ``options`` safe to log."""
    return {
        key: ("****" if "password" in key.lower() or key.lower().endswith(".pass") else value)
        for key, value in options.items()
    }


@dataclass
class Settings:
    metadata: str = "./metadata"
    datasets: str = "./datasets"
    elasticsearch_options: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ClusterEndpoint:
    """Where the search cluster lives and how to authenticate against it."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    ssl: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    verify_certs: bool = True

    @property
    def protocol(self) -> str:
        return "https" if self.ssl else "http"

    @property
    def auth(self) -> Optional[tuple[str, str]]:
        if self.username and self.password:
            return self.username, self.password
        return None

    def url(self, path: str = "") -> str:
        return f"{self.protocol}://{self.host}:{self.port}{path}"

    @classmethod
    def from_options(cls, options: dict[str, str]) -> "ClusterEndpoint":
        host = options.get(ES_NODES, DEFAULT_HOST).strip() or DEFAULT_HOST
        # es.nodes may carry a list; templates go to the first node.
        host = host.split(",")[0].strip()
        raw_port = options.get(ES_PORT, str(DEFAULT_PORT))
        try:
            port = int(raw_port)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid {ES_PORT}: {raw_port!r}")
        raw_timeout = options.get(ES_HTTP_TIMEOUT, str(DEFAULT_TIMEOUT_SECONDS))
        try:
            timeout = float(raw_timeout)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid {ES_HTTP_TIMEOUT}: {raw_timeout!r}")
        return cls(
            host=host,
            port=port,
            ssl=is_truthy_flag(options.get(ES_NET_SSL, "false")),
            username=options.get(ES_AUTH_USER) or None,
            password=options.get(ES_AUTH_PASSWORD) or None,
            timeout=timeout,
            verify_certs=not is_truthy_flag(options.get(ES_SSL_ALLOW_SELF_SIGNED, "false")),
        )


def _read_settings_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Unable to read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed settings file {path}: {e}") from e
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")
    return loaded


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from YAML, then apply environment overrides.

    Args:
        path: Settings file. Falls back to ``$SEARCH_INDEXER_CONFIG``; when
            neither is set only defaults and environment variables apply.

    Returns:
        Settings: The resolved settings.
    """
    config_path = path or os.getenv(CONFIG_PATH_ENV, "")
    raw: dict[str, Any] = {}
    if config_path:
        logger.info(f"Loading settings from {config_path}")
        raw = _read_settings_file(Path(config_path).expanduser())

    es_section = raw.get("elasticsearch") or {}
    if not isinstance(es_section, dict):
        raise ConfigurationError("elasticsearch section must be a mapping")
    options = _stringify_options(es_section.get("options"))

    for env_name, option_key in _ENV_OPTION_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            options[option_key] = value

    settings = Settings(
        metadata=str(os.getenv("SEARCH_INDEXER_METADATA") or raw.get("metadata") or Settings.metadata),
        datasets=str(os.getenv("SEARCH_INDEXER_DATASETS") or raw.get("datasets") or Settings.datasets),
        elasticsearch_options=options,
    )
    logger.debug(f"Settings resolved: metadata={settings.metadata} datasets={settings.datasets}")
    return settings
