"""
The load transaction: truncate, create or alter, copy, commit.

All steps run inside one warehouse transaction. Any failure rolls the whole
thing back, so readers never see a half-altered table or a partial load.
"""

from contextlib import contextmanager
from typing import Iterator

import structlog

from warehouse_loader.driver import Transaction, WarehouseDriver
from warehouse_loader.errors import CommitError, DriverError
from warehouse_loader.models import LoadDecision, SourceFileReference, TableDefinition
from warehouse_loader.reconcile import Reconciliation

log = structlog.get_logger()


@contextmanager
def rollback_on_error(tx: Transaction, table: str) -> Iterator[Transaction]:
    """
    Yield ``tx`` and roll it back if the block raises.

    A failed rollback is logged; the error from the block is what propagates.
    """
    try:
        yield tx
    except BaseException as exc:
        try:
            tx.rollback()
            log.warning("transaction_rolled_back", table=table, error=str(exc))
        except DriverError as rollback_error:
            log.error(
                "rollback_failed",
                table=table,
                error=str(rollback_error),
                original_error=str(exc),
            )
        raise


def run_copy(
    driver: WarehouseDriver,
    source: SourceFileReference,
    desired: TableDefinition,
    decision: LoadDecision,
    reconciliation: Reconciliation,
) -> int:
    """
    Apply ``decision`` and copy ``source`` in a single transaction.

    Returns:
        Number of rows copied

    Raises:
        DriverError: If any step before commit fails (already rolled back)
        CommitError: If the commit itself fails; the outcome is unknown
    """
    table = desired.qualified_name
    tx = driver.begin_transaction()

    with rollback_on_error(tx, table):
        # TRUNCATE for dimension tables, never for a table we're about to create
        if decision.truncate and not decision.create_table:
            tx.truncate(desired.schema, desired.name)

        if decision.create_table:
            tx.create_table(desired)
        elif reconciliation.new_columns:
            tx.alter_table(desired.schema, desired.name, reconciliation.new_columns)

        rows = tx.bulk_copy(source, gzip=source.gzip, json_format=True)

        try:
            tx.commit()
        except DriverError as e:
            log.error("commit_failed", table=table, error=str(e))
            raise CommitError(str(e)) from e

    return rows
