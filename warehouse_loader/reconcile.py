"""
Schema reconciliation between a desired and an observed table.

Reconciliation is additive-only:
- A missing table is created from the full desired definition
- Desired columns the table lacks are added, in declaration order
- Columns only the table has are left alone
- A shared column with a different type is a hard conflict, as is a
  distribution or sort key that differs from what the table was built with
"""

from dataclasses import dataclass

import structlog

from warehouse_loader.errors import StructuralConflictError
from warehouse_loader.models import Column, ObservedTable, TableDefinition, TablePresent

log = structlog.get_logger()


@dataclass(frozen=True)
class Reconciliation:
    """Whether to create the table, and which columns to add otherwise."""
    create_table: bool
    new_columns: tuple[Column, ...] = ()


def _normalize_type(col_type: str) -> str:
    return " ".join(col_type.upper().split())


def reconcile(desired: TableDefinition, observed: ObservedTable) -> Reconciliation:
    """
    Compare ``desired`` against the observed destination table.

    Raises:
        StructuralConflictError: If a shared column differs in type, or the
            declared dist/sort keys differ from the existing table's
    """
    if not isinstance(observed, TablePresent):
        return Reconciliation(create_table=True)

    existing = observed.definition
    new_columns = []
    for col in desired.columns:
        current = existing.column(col.name)
        if current is None:
            new_columns.append(col)
            continue
        if _normalize_type(current.type) != _normalize_type(col.type):
            raise StructuralConflictError(
                desired.qualified_name, col.name, current.type, col.type
            )

    _check_keys(desired, existing)

    if new_columns:
        log.info(
            "columns_to_add",
            table=desired.qualified_name,
            columns=[c.name for c in new_columns],
        )
    return Reconciliation(create_table=False, new_columns=tuple(new_columns))


def _check_keys(desired: TableDefinition, existing: TableDefinition) -> None:
    """Keys are only compared when both sides declare them."""
    if desired.dist_key and existing.dist_key:
        if desired.dist_key.lower() != existing.dist_key.lower():
            raise StructuralConflictError(
                desired.qualified_name,
                desired.dist_key,
                existing.dist_key,
                desired.dist_key,
                attribute="dist_key",
            )

    if desired.sort_keys and existing.sort_keys:
        wanted = [k.lower() for k in desired.sort_keys]
        current = [k.lower() for k in existing.sort_keys]
        if wanted != current:
            raise StructuralConflictError(
                desired.qualified_name,
                desired.sort_keys[0],
                ",".join(existing.sort_keys),
                ",".join(desired.sort_keys),
                attribute="sort_keys",
            )
