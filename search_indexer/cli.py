"""Command line entry point.

    python -m search_indexer index --domain sales --schema customers \\
        --format json --dataset /data/customers.json
"""
import argparse
import logging
import sys
from typing import Optional

from search_indexer.errors import ConfigurationError
from search_indexer.index_config import DatasetFormat, IndexConfig, parse_conf_pairs
from search_indexer.index_job import IndexJob
from search_indexer.settings import load_settings
from search_indexer.storage import ArrowStorageHandler

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TEMPLATE_REJECTED = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="search_indexer",
        description="Register an index template and bulk-load a dataset into a search cluster",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Settings YAML file. Defaults to $SEARCH_INDEXER_CONFIG.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    commands = parser.add_subparsers(dest="command", required=True)

    index = commands.add_parser("index", help="Index a dataset.")
    index.add_argument("--domain", required=True)
    index.add_argument("--schema", required=True)
    index.add_argument(
        "--format",
        default=DatasetFormat.JSON.value,
        choices=[member.value for member in DatasetFormat],
    )
    index.add_argument(
        "--dataset",
        default=None,
        help="Dataset path. Defaults to the accepted area of the domain/schema.",
    )
    index.add_argument("--mapping", default=None, help="Explicit mapping template file.")
    index.add_argument("--id", default=None, help="Field holding the document id.")
    index.add_argument("--timestamp", default=None, help="Suffix appended to the index name.")
    index.add_argument(
        "--conf",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Write option passed to the bulk write. Repeatable.",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    try:
        settings = load_settings(args.config)
        config = IndexConfig(
            domain=args.domain,
            schema=args.schema,
            format=DatasetFormat.parse(args.format),
            dataset=args.dataset,
            mapping=args.mapping,
            id=args.id,
            timestamp=args.timestamp,
            conf=parse_conf_pairs(args.conf),
        )
        job = IndexJob(config, ArrowStorageHandler(), settings)
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_USAGE

    logger.info(f"Starting {job.name}")
    try:
        indexed = job.run()
    except Exception:
        logger.exception(f"{job.name} failed")
        raise
    return EXIT_OK if indexed else EXIT_TEMPLATE_REJECTED


if __name__ == "__main__":
    sys.exit(main())
