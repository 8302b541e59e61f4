"""Resolve the index template for an indexing job.

Resolution order, first hit wins:

1. the explicit mapping file of the job, read verbatim;
2. the declared schema of the job's domain, rendered with the domain's
   mapping template;
3. a template synthesized from the dataset's own columns, nested under a
   single ``ignore`` field, for datasets that were never declared.
"""

import logging
from typing import Callable, Optional

import pyarrow as pa

from search_indexer.index_config import IndexConfig
from search_indexer.schema_registry import SchemaRegistry, fallback_mapping
from search_indexer.storage import StorageHandler

logger = logging.getLogger(__name__)

FALLBACK_FIELD_NAME = "ignore"

Resolver = Callable[[IndexConfig], Optional[str]]


class TemplateResolver:
    def __init__(
        self,
        storage: StorageHandler,
        registry: SchemaRegistry,
        dataset_schema: pa.Schema,
    ) -> None:
        self.storage = storage
        self.registry = registry
        self.dataset_schema = dataset_schema

    def from_mapping_file(self, config: IndexConfig) -> Optional[str]:
        if not config.mapping:
            return None
        logger.info(f"Using explicit mapping {config.mapping}")
        return self.storage.read(config.mapping)

    def from_declared_schema(self, config: IndexConfig) -> Optional[str]:
        domain = self.registry.get_domain(config.domain)
        if domain is None:
            return None
        schema = domain.find_schema(config.schema)
        if schema is None:
            return None
        logger.info(f"Using declared schema {domain.name}.{schema.name}")
        return schema.mapping(domain.mapping(schema), domain.name)

    def from_dataset_schema(self, config: IndexConfig) -> Optional[str]:
        logger.info(f"No declared schema for {config.template_name}, deriving mapping from dataset columns")
        return fallback_mapping(config.domain, config.schema, FALLBACK_FIELD_NAME, self.dataset_schema)

    def resolvers(self) -> tuple[Resolver, ...]:
        return (
            self.from_mapping_file,
            self.from_declared_schema,
            self.from_dataset_schema,
        )

    def resolve(self, config: IndexConfig) -> str:
        for resolver in self.resolvers():
            content = resolver(config)
            if content is not None:
                return content
        # from_dataset_schema always answers.
        raise AssertionError("no template resolver produced a result")
