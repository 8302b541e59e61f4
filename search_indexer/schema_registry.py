"""Declared domains and schemas, and the index templates rendered from them.

Domains are YAML files under ``{metadata}/domains``::

    load:
      name: sales
      directory: /incoming/sales
      schemas:
        - name: customers
          pattern: "customers-.*.json"
          attributes:
            - name: id
              type: string
              required: true
            - name: signup
              type: date

A top-level ``load`` key is optional. Mapping templates live under
``{metadata}/mapping`` as ``{domain}/{schema}.json`` or ``{domain}.json``
and may use the ``__PROPERTIES__``, ``__INDEX__``, ``__DOMAIN__`` and
``__SCHEMA__`` placeholders.
"""

import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Optional

import pyarrow as pa
import yaml

from search_indexer.errors import ConfigurationError, StorageNotFoundError
from search_indexer.storage import StorageHandler

logger = logging.getLogger(__name__)

PROPERTIES_PLACEHOLDER = "__PROPERTIES__"
INDEX_PLACEHOLDER = "__INDEX__"
DOMAIN_PLACEHOLDER = "__DOMAIN__"
SCHEMA_PLACEHOLDER = "__SCHEMA__"

DEFAULT_TEMPLATE = """{
  "index_patterns": ["__INDEX__", "__INDEX__-*"],
  "settings": {
    "number_of_shards": "1",
    "number_of_replicas": "0"
  },
  "mappings": {
    "_source": {
      "enabled": true
    },
    "properties": {
      __PROPERTIES__
    }
  }
}"""

_PRIMITIVE_FIELD_TYPES = {
    "string": "keyword",
    "keyword": "keyword",
    "text": "text",
    "long": "long",
    "int": "long",
    "integer": "long",
    "short": "long",
    "byte": "long",
    "double": "double",
    "float": "double",
    "decimal": "double",
    "boolean": "boolean",
    "date": "date",
    "timestamp": "date",
}


def primitive_field_type(type_name: str) -> str:
    normalized = str(type_name or "").strip().lower()
    mapped = _PRIMITIVE_FIELD_TYPES.get(normalized)
    if mapped is None:
        logger.warning(f"Unknown attribute type '{type_name}', mapping it as keyword")
        return "keyword"
    return mapped


def arrow_type_mapping(data_type: pa.DataType) -> dict[str, Any]:
    """Field mapping for an Arrow type. Lists map to their element type."""
    if pa.types.is_struct(data_type):
        return {
            "properties": {
                data_type.field(i).name: arrow_type_mapping(data_type.field(i).type)
                for i in range(data_type.num_fields)
            }
        }
    if (
        pa.types.is_list(data_type)
        or pa.types.is_large_list(data_type)
        or pa.types.is_fixed_size_list(data_type)
    ):
        return arrow_type_mapping(data_type.value_type)
    if pa.types.is_boolean(data_type):
        return {"type": "boolean"}
    if pa.types.is_integer(data_type):
        return {"type": "long"}
    if pa.types.is_floating(data_type) or pa.types.is_decimal(data_type):
        return {"type": "double"}
    if pa.types.is_timestamp(data_type) or pa.types.is_date(data_type):
        return {"type": "date"}
    return {"type": "keyword"}


def _properties_body(properties: dict[str, Any]) -> str:
    # Object body without the surrounding braces.
    return json.dumps(properties, ensure_ascii=False)[1:-1]


def render_template(
    template: Optional[str],
    domain_name: str,
    schema_name: str,
    properties: dict[str, Any],
) -> str:
    """Substitute the placeholders of ``template`` (or the default one)."""
    text = template if template is not None else DEFAULT_TEMPLATE
    rendered = (
        text.replace(PROPERTIES_PLACEHOLDER, _properties_body(properties))
        .replace(INDEX_PLACEHOLDER, f"{domain_name}_{schema_name}")
        .replace(DOMAIN_PLACEHOLDER, domain_name)
        .replace(SCHEMA_PLACEHOLDER, schema_name)
    )
    try:
        json.loads(rendered)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Mapping template for {domain_name}_{schema_name} is not valid JSON once rendered: {e}"
        ) from e
    return rendered


def fallback_mapping(domain_name: str, schema_name: str, field_name: str, dataset_schema: pa.Schema) -> str:
    """Template for datasets without a declared schema.

    The whole row type becomes a single object field named ``field_name``.
    """
    row_type = pa.struct(list(dataset_schema))
    return render_template(None, domain_name, schema_name, {field_name: arrow_type_mapping(row_type)})


@dataclass
class Attribute:
    name: str
    type: str = "string"
    array: bool = False
    required: bool = False
    comment: str = ""
    es_mapping: Optional[dict[str, Any]] = None
    attributes: list["Attribute"] = field(default_factory=list)

    def mapping(self) -> dict[str, Any]:
        if self.es_mapping:
            return dict(self.es_mapping)
        if self.attributes:
            return {"properties": {attr.name: attr.mapping() for attr in self.attributes}}
        return {"type": primitive_field_type(self.type)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any], context: str) -> "Attribute":
        if not isinstance(raw, dict) or not str(raw.get("name", "")).strip():
            raise ConfigurationError(f"Attribute without a name in {context}")
        name = str(raw["name"]).strip()
        es_mapping = raw.get("es_mapping")
        if es_mapping is not None and not isinstance(es_mapping, dict):
            raise ConfigurationError(f"es_mapping of {context}.{name} must be a mapping")
        return cls(
            name=name,
            type=str(raw.get("type") or "string"),
            array=bool(raw.get("array", False)),
            required=bool(raw.get("required", False)),
            comment=str(raw.get("comment") or ""),
            es_mapping=es_mapping,
            attributes=[
                cls.from_dict(child, f"{context}.{name}") for child in raw.get("attributes") or []
            ],
        )


@dataclass
class Schema:
    name: str
    pattern: str = ""
    comment: str = ""
    attributes: list[Attribute] = field(default_factory=list)

    def properties(self) -> dict[str, Any]:
        return {attr.name: attr.mapping() for attr in self.attributes}

    def mapping(self, template: Optional[str], domain_name: str) -> str:
        """Index template for this schema, rendered from ``template`` or the default one."""
        return render_template(template, domain_name, self.name, self.properties())

    @classmethod
    def from_dict(cls, raw: dict[str, Any], domain_name: str) -> "Schema":
        if not isinstance(raw, dict) or not str(raw.get("name", "")).strip():
            raise ConfigurationError(f"Schema without a name in domain '{domain_name}'")
        name = str(raw["name"]).strip()
        return cls(
            name=name,
            pattern=str(raw.get("pattern") or ""),
            comment=str(raw.get("comment") or ""),
            attributes=[
                Attribute.from_dict(attr, f"{domain_name}.{name}") for attr in raw.get("attributes") or []
            ],
        )


@dataclass
class Domain:
    name: str
    directory: str = ""
    comment: str = ""
    schemas: list[Schema] = field(default_factory=list)
    mapping_dir: Optional[str] = field(default=None, repr=False, compare=False)
    storage: Optional[StorageHandler] = field(default=None, repr=False, compare=False)

    def find_schema(self, schema_name: str) -> Optional[Schema]:
        for schema in self.schemas:
            if schema.name == schema_name:
                return schema
        return None

    def mapping(self, schema: Schema) -> Optional[str]:
        """Custom template text for ``schema``, if one is stored for this domain."""
        if self.storage is None or not self.mapping_dir:
            return None
        candidates = (
            posixpath.join(self.mapping_dir, self.name, f"{schema.name}.json"),
            posixpath.join(self.mapping_dir, f"{self.name}.json"),
        )
        for candidate in candidates:
            if self.storage.exist(candidate):
                logger.info(f"Using mapping template {candidate}")
                return self.storage.read(candidate)
        return None

    @classmethod
    def from_dict(cls, raw: dict[str, Any], source: str = "") -> "Domain":
        if isinstance(raw, dict) and isinstance(raw.get("load"), dict):
            raw = raw["load"]
        if not isinstance(raw, dict) or not str(raw.get("name", "")).strip():
            raise ConfigurationError(f"Domain declaration without a name: {source or raw!r}")
        name = str(raw["name"]).strip()
        return cls(
            name=name,
            directory=str(raw.get("directory") or ""),
            comment=str(raw.get("comment") or ""),
            schemas=[Schema.from_dict(schema, name) for schema in raw.get("schemas") or []],
        )


class SchemaRegistry:
    """Lookup of declared domains by name."""

    def __init__(self, domains: list[Domain] | None = None) -> None:
        self._domains: dict[str, Domain] = {}
        for domain in domains or []:
            if domain.name in self._domains:
                raise ConfigurationError(f"Domain '{domain.name}' is declared more than once")
            self._domains[domain.name] = domain

    @property
    def domains(self) -> list[Domain]:
        return list(self._domains.values())

    def get_domain(self, name: str) -> Optional[Domain]:
        return self._domains.get(name)

    @classmethod
    def load(cls, storage: StorageHandler, metadata: str) -> "SchemaRegistry":
        """Load every domain file under ``{metadata}/domains``."""
        domains_dir = posixpath.join(metadata.rstrip("/"), "domains")
        mapping_dir = posixpath.join(metadata.rstrip("/"), "mapping")
        if not storage.exist(domains_dir):
            logger.info(f"No domain declarations found under {domains_dir}")
            return cls([])

        paths = sorted(set(storage.list(domains_dir, ".yml") + storage.list(domains_dir, ".yaml")))
        domains: list[Domain] = []
        for path in paths:
            try:
                raw = yaml.safe_load(storage.read(path))
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Malformed domain file {path}: {e}") from e
            except StorageNotFoundError:
                logger.warning(f"Domain file {path} disappeared while loading")
                continue
            domain = Domain.from_dict(raw, source=path)
            domain.mapping_dir = mapping_dir
            domain.storage = storage
            domains.append(domain)
        logger.info(f"Loaded {len(domains)} domain(s) from {domains_dir}")
        return cls(domains)
