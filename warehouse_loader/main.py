"""
Command-line entry point.

Finds the latest exported file for each requested table and loads it:
- If the destination table does not exist, it is created
- If the destination table lacks columns, they are added
- If the table already holds data at least as recent, the table is skipped
  (unless --force)

Usage:
    warehouse-loader --schema mongo --tables users,orders [--truncate] [--force]
"""

import argparse
import logging
import sys
from datetime import datetime

import structlog

from warehouse_loader.config import Config, load_table_mapping
from warehouse_loader.driver import DuckDBDriver
from warehouse_loader.errors import LoaderError
from warehouse_loader.locator import FileLocator
from warehouse_loader.models import LoadStatus
from warehouse_loader.runner import load_tables
from warehouse_loader.storage import storage_for

log = structlog.get_logger()


def configure_logging(level: str) -> None:
    """JSON logs, one object per line."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


def parse_date(value: str) -> datetime:
    """Parse an RFC3339 timestamp; it must carry a timezone."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an RFC3339 timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        raise argparse.ArgumentTypeError(f"timestamp needs a timezone: {value!r}")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="warehouse-loader",
        description="Load the latest exported files into the warehouse",
    )
    parser.add_argument("--schema", default="mongo", help="Target schema to load into")
    parser.add_argument("--tables", required=True, help="Tables to load, comma separated")
    parser.add_argument(
        "--truncate",
        action="store_true",
        help="Truncate tables before loading (also set per table in the declarations)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Load even if the table already has data this recent",
    )
    parser.add_argument(
        "--date",
        type=parse_date,
        help="Load the file with this logical date (RFC3339) instead of the latest",
    )
    parser.add_argument(
        "--config",
        help="Table declaration YAML file or directory (overrides TABLE_CONFIG_PATH)",
    )
    return parser


def main(argv: list[str] | None = None, config: Config | None = None) -> int:
    """Run the loader. Returns 0 if no table failed."""
    args = build_parser().parse_args(argv)
    if config is None:
        config = Config.from_env()

    tables = [t.strip() for t in args.tables.split(",") if t.strip()]
    log.info("run_started", schema=args.schema, tables=tables, force=args.force)

    table_config_path = args.config or config.table_config_path
    try:
        mapping = load_table_mapping(table_config_path) if table_config_path else {}
        driver = DuckDBDriver.from_config(config)
    except LoaderError as e:
        log.error("run_setup_failed", error=str(e), error_type=type(e).__name__)
        return 1

    try:
        locator = FileLocator(storage_for(config.source_root), config.source_root, mapping)
        results = load_tables(
            driver,
            locator,
            args.schema,
            tables,
            truncate=args.truncate,
            force=args.force,
            data_date=args.date,
        )
    finally:
        driver.close()

    failed = [r.table for r in results if r.outcome.status is LoadStatus.FAILED]
    log.info(
        "run_complete",
        committed=sum(1 for r in results if r.outcome.status is LoadStatus.COMMITTED),
        skipped=sum(1 for r in results if r.outcome.status is LoadStatus.SKIPPED_ALREADY_FRESH),
        no_source=sum(1 for r in results if r.outcome.status is LoadStatus.NO_SOURCE_FILE),
        failed=failed,
    )
    return 1 if failed else 0


def cli() -> None:
    config = Config.from_env()
    configure_logging(config.log_level)
    sys.exit(main(config=config))


if __name__ == "__main__":
    cli()
