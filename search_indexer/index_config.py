"""Job description for a single indexing run."""

import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from search_indexer.errors import ConfigurationError
from search_indexer.settings import Settings


class DatasetFormat(Enum):
    """Supported dataset layouts."""
    JSON = "json"
    JSON_ARRAY = "json-array"
    PARQUET = "parquet"

    @classmethod
    def parse(cls, value: "str | DatasetFormat") -> "DatasetFormat":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        supported = ", ".join(member.value for member in cls)
        raise ConfigurationError(f"Unsupported dataset format '{value}'. Expected one of: {supported}")


def parse_conf_pairs(pairs: list[str] | tuple[str, ...] | None) -> dict[str, str]:
    """Turn ``key=value`` strings into a dict. Later keys win."""
    conf: dict[str, str] = {}
    for pair in pairs or ():
        key, sep, value = str(pair).partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigurationError(f"Invalid option '{pair}'. Expected key=value.")
        conf[key] = value.strip()
    return conf


@dataclass(frozen=True)
class IndexConfig:
    domain: str
    schema: str
    format: DatasetFormat = DatasetFormat.JSON
    dataset: Optional[str] = None
    mapping: Optional[str] = None
    id: Optional[str] = None
    timestamp: Optional[str] = None
    conf: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not str(self.domain or "").strip():
            raise ConfigurationError("domain must not be empty")
        if not str(self.schema or "").strip():
            raise ConfigurationError("schema must not be empty")
        object.__setattr__(self, "format", DatasetFormat.parse(self.format))

    @property
    def template_name(self) -> str:
        return f"{self.domain}_{self.schema}"

    def get_resource(self) -> str:
        if self.timestamp:
            return f"{self.template_name}-{self.timestamp}"
        return self.template_name

    def get_dataset(self, settings: Optional[Settings] = None) -> str:
        if self.dataset:
            return self.dataset
        root = (settings or Settings()).datasets.rstrip("/")
        return posixpath.join(root, "accepted", self.domain, self.schema)
