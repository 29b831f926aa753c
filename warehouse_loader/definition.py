"""Translate declared source columns into a warehouse table definition."""

from warehouse_loader.errors import SchemaError
from warehouse_loader.models import Column, DeclaredColumn, TableDefinition

# Semantic type -> warehouse type. One entry per semantic type, no aliases.
TYPE_MAP = {
    "boolean": "BOOLEAN",
    "int": "INTEGER",
    "bigint": "BIGINT",
    "float": "DOUBLE",
    "string": "VARCHAR",
    "date": "DATE",
    "timestamp": "TIMESTAMP WITH TIME ZONE",
}

FRESHNESS_TYPES = {"timestamp", "date"}


def warehouse_type(semantic_type: str) -> str:
    """
    Map a declared semantic type to its warehouse column type.

    Raises:
        SchemaError: If the semantic type is unknown
    """
    try:
        return TYPE_MAP[semantic_type.strip().lower()]
    except KeyError:
        raise SchemaError(f"unknown column type {semantic_type!r}") from None


def build_table_definition(
    schema: str,
    table: str,
    columns: tuple[DeclaredColumn, ...] | list[DeclaredColumn],
    freshness_column: str,
    dist_key: str | None = None,
    sort_keys: tuple[str, ...] = (),
) -> TableDefinition:
    """
    Build the desired definition of ``schema.table`` from declared columns.

    Column order follows the declarations. Names are compared
    case-insensitively: "Id" and "id" collide.

    Raises:
        SchemaError: On empty or duplicated columns, an unknown type, a
            missing or non-temporal freshness column, or keys naming
            undeclared columns
    """
    qualified = f"{schema}.{table}"
    if not columns:
        raise SchemaError(f"{qualified}: no columns declared", table=qualified)

    seen: set[str] = set()
    built = []
    for declared in columns:
        key = declared.name.lower()
        if key in seen:
            raise SchemaError(
                f"{qualified}: duplicate column {declared.name!r}", table=qualified
            )
        seen.add(key)
        try:
            col_type = warehouse_type(declared.type)
        except SchemaError as e:
            raise SchemaError(f"{qualified}.{declared.name}: {e}", table=qualified) from None
        built.append(Column(declared.name, col_type, nullable=not declared.not_null))

    freshness = next(
        (c for c in columns if c.name.lower() == freshness_column.lower()), None
    )
    if freshness is None:
        raise SchemaError(
            f"{qualified}: freshness column {freshness_column!r} is not declared",
            table=qualified,
        )
    if freshness.type.strip().lower() not in FRESHNESS_TYPES:
        raise SchemaError(
            f"{qualified}: freshness column {freshness_column!r} must be a "
            f"timestamp or date, not {freshness.type!r}",
            table=qualified,
        )

    for key_column in ([dist_key] if dist_key else []) + list(sort_keys):
        if key_column.lower() not in seen:
            raise SchemaError(
                f"{qualified}: key column {key_column!r} is not declared",
                table=qualified,
            )

    return TableDefinition(
        schema=schema,
        name=table,
        columns=tuple(built),
        freshness_column=freshness.name,
        dist_key=dist_key,
        sort_keys=tuple(sort_keys),
    )
