import logging
from dataclasses import replace
from typing import Optional

from search_indexer.bulk_loader import ES_MAPPING_ID, ES_RESOURCE_WRITE, BulkLoader, merge_options
from search_indexer.dataset_reader import read_dataset
from search_indexer.index_config import IndexConfig
from search_indexer.schema_registry import SchemaRegistry
from search_indexer.settings import ClusterEndpoint, Settings, mask_options
from search_indexer.storage import StorageHandler
from search_indexer.template_registrar import TemplateRegistrar
from search_indexer.template_resolver import TemplateResolver

logger = logging.getLogger(__name__)


def job_write_options(config: IndexConfig) -> dict[str, str]:
    """Per-job write options: free-form conf, target resource, optional id field."""
    options = dict(config.conf)
    options[ES_RESOURCE_WRITE] = config.get_resource()
    if config.id:
        options[ES_MAPPING_ID] = config.id
    return options


class IndexJob:
    """Load a dataset, register its index template, then bulk-write its rows.

    The bulk write only happens once the template PUT succeeded. ``run``
    returns whether documents were written; a rejected template is logged
    and reported as ``False`` rather than raised.
    """

    def __init__(
        self,
        config: IndexConfig,
        storage: StorageHandler,
        settings: Settings,
        registrar: Optional[TemplateRegistrar] = None,
        loader: Optional[BulkLoader] = None,
        registry: Optional[SchemaRegistry] = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.settings = settings
        endpoint = ClusterEndpoint.from_options(settings.elasticsearch_options)
        self.registrar = registrar or TemplateRegistrar(endpoint)
        self.loader = loader or BulkLoader(endpoint)
        self._registry = registry

    @property
    def name(self) -> str:
        return f"Index {self.config.get_dataset(self.settings)}"

    @property
    def registry(self) -> SchemaRegistry:
        if self._registry is None:
            self._registry = SchemaRegistry.load(self.storage, self.settings.metadata)
        return self._registry

    def run(self) -> bool:
        config = self.config
        path = config.get_dataset(self.settings)
        logger.info(f"Indexing resource {config.get_resource()} with {replace(config, conf=mask_options(config.conf))}")

        table = read_dataset(path, config.format)
        content = TemplateResolver(self.storage, self.registry, table.schema).resolve(config)

        if not self.registrar.register(config.template_name, content):
            logger.error(f"Skipping bulk write of {path}: template {config.template_name} was not created")
            return False

        options = merge_options(self.settings.elasticsearch_options, job_write_options(config))
        self.loader.load(table, options)
        return True
