"""
Load orchestration.

run_load handles one (schema, table): build the desired definition, check
freshness, reconcile the schema and run the load transaction.
load_tables runs the locate-and-load sequence for several tables, one after
another, each in its own transaction.
"""

from dataclasses import dataclass
from datetime import datetime

import structlog

from warehouse_loader.definition import build_table_definition
from warehouse_loader.driver import WarehouseDriver
from warehouse_loader.errors import LoaderError, NotFoundError
from warehouse_loader.freshness import should_proceed
from warehouse_loader.locator import FileLocator
from warehouse_loader.models import (
    LoadDecision,
    LoadOutcome,
    LoadStatus,
    SourceFileReference,
)
from warehouse_loader.reconcile import reconcile
from warehouse_loader.transaction import run_copy

log = structlog.get_logger()


def run_load(
    driver: WarehouseDriver,
    source: SourceFileReference,
    truncate: bool = False,
    force: bool = False,
) -> LoadOutcome:
    """
    Load ``source`` into its destination table.

    Args:
        driver: Warehouse to load into
        source: File returned by the locator
        truncate: Empty the table first (dimension tables). Ignored when the
            table doesn't exist yet.
        force: Load even if the table already has data at least as recent

    Returns:
        COMMITTED, SKIPPED_ALREADY_FRESH, or FAILED with the error attached.
        Only LoaderError subclasses become FAILED; anything else propagates.
    """
    table = source.qualified_name
    log.info("load_started", table=table, location=source.location, data_date=source.data_date.isoformat())

    try:
        desired = build_table_definition(
            source.schema,
            source.table,
            source.columns,
            source.meta.freshness_column,
            dist_key=source.meta.dist_key,
            sort_keys=source.meta.sort_keys,
        )

        observed, freshness = driver.introspect_table(
            source.schema, source.table, desired.freshness_column
        )

        # Unless forced, only load data newer than what's already there
        if not should_proceed(source.data_date, freshness):
            if not force:
                log.info(
                    "already_fresh",
                    table=table,
                    data_date=source.data_date.isoformat(),
                    latest_loaded=freshness.latest.isoformat(),
                )
                return LoadOutcome.skipped_already_fresh(
                    f"{table} already has data up to {freshness.latest.isoformat()}"
                )
            log.info("forcing_load", table=table, latest_loaded=freshness.latest.isoformat())

        reconciliation = reconcile(desired, observed)
        decision = LoadDecision(
            proceed=True,
            create_table=reconciliation.create_table,
            truncate=truncate and not reconciliation.create_table,
        )

        rows = run_copy(driver, source, desired, decision, reconciliation)

    except LoaderError as e:
        log.error("load_failed", table=table, error=str(e), error_type=type(e).__name__)
        return LoadOutcome.failed(e)

    log.info(
        "load_committed",
        table=table,
        rows=rows,
        created=decision.create_table,
        columns_added=len(reconciliation.new_columns),
        truncated=decision.truncate,
    )
    return LoadOutcome.committed()


@dataclass
class TableResult:
    """Outcome for one table of a multi-table run."""
    table: str
    outcome: LoadOutcome


def load_tables(
    driver: WarehouseDriver,
    locator: FileLocator,
    schema: str,
    tables: list[str],
    truncate: bool = False,
    force: bool = False,
    data_date: datetime | None = None,
) -> list[TableResult]:
    """
    Locate and load each table in order.

    A skipped or failed table doesn't stop the rest. The per-table truncate
    setting from the declarations is OR-ed with ``truncate``.
    """
    results = []
    for table in tables:
        qualified_name = f"{schema}.{table}"
        log.info("table_started", schema=schema, table=table)

        try:
            source = locator.resolve_latest_file(schema, table, data_date)
        except NotFoundError as e:
            log.warning("source_not_found", table=qualified_name, error=str(e))
            results.append(TableResult(
                qualified_name, LoadOutcome(LoadStatus.NO_SOURCE_FILE, str(e), e)
            ))
            continue
        except LoaderError as e:
            log.error("locate_failed", table=qualified_name, error=str(e), error_type=type(e).__name__)
            results.append(TableResult(qualified_name, LoadOutcome.failed(e)))
            continue

        outcome = run_load(
            driver,
            source,
            truncate=truncate or source.meta.truncate,
            force=force,
        )
        results.append(TableResult(qualified_name, outcome))

    return results
