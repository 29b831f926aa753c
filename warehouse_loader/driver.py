"""
Warehouse driver for the loader.

Provides the interface the load core talks to, plus a DuckDB implementation.
All SQL text is generated here; the core only sees definitions and columns.

DuckDB has no physical distribution or sort keys, so the declared keys (and
the freshness column) are stored as JSON in the table comment and read back
on introspection. This keeps key drift detectable across runs.
"""

import json
from contextlib import contextmanager
from datetime import timezone
from typing import Iterator, Protocol

import duckdb
import structlog

from warehouse_loader.errors import DriverError
from warehouse_loader.models import (
    ABSENT,
    Column,
    FreshnessState,
    ObservedTable,
    SourceFileReference,
    TableDefinition,
    TablePresent,
)

log = structlog.get_logger()


class Transaction(Protocol):
    """
    One warehouse transaction.

    Nothing issued through it is visible to other readers until commit.
    """

    def truncate(self, schema: str, table: str) -> None:
        ...

    def create_table(self, definition: TableDefinition) -> None:
        ...

    def alter_table(self, schema: str, table: str, columns: tuple[Column, ...]) -> None:
        """Add each column, in order."""
        ...

    def bulk_copy(self, source: SourceFileReference, gzip: bool, json_format: bool) -> int:
        """Copy the source file into its table. Returns rows loaded."""
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class WarehouseDriver(Protocol):
    """Protocol defining what the load core needs from a warehouse."""

    def introspect_table(
        self, schema: str, table: str, freshness_column: str
    ) -> tuple[ObservedTable, FreshnessState]:
        """
        Describe an existing table and its latest freshness value.

        Returns (ABSENT, FreshnessState.table_absent()) if the table doesn't exist.
        """
        ...

    def begin_transaction(self) -> Transaction:
        ...


def quote_ident(name: str) -> str:
    """Quote an identifier for DuckDB."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a string literal for DuckDB."""
    return "'" + value.replace("'", "''") + "'"


def qualified(schema: str, table: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(table)}"


@contextmanager
def _wrap(operation: str) -> Iterator[None]:
    """Re-raise DuckDB errors as DriverError for ``operation``."""
    try:
        yield
    except duckdb.Error as e:
        raise DriverError(operation, str(e)) from e


class DuckDBTransaction:
    """Transaction on a DuckDB connection. DDL in DuckDB is transactional."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn

    def truncate(self, schema: str, table: str) -> None:
        with _wrap("truncate"):
            self.conn.execute(f"TRUNCATE {qualified(schema, table)}")
        log.info("table_truncated", table=f"{schema}.{table}")

    def create_table(self, definition: TableDefinition) -> None:
        columns = ", ".join(
            f"{quote_ident(c.name)} {c.type}{'' if c.nullable else ' NOT NULL'}"
            for c in definition.columns
        )
        target = qualified(definition.schema, definition.name)
        meta = {
            "freshness_column": definition.freshness_column,
            "dist_key": definition.dist_key,
            "sort_keys": list(definition.sort_keys),
        }

        with _wrap("create_table"):
            self.conn.execute(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(definition.schema)}")
            self.conn.execute(f"CREATE TABLE {target} ({columns})")
            self.conn.execute(
                f"COMMENT ON TABLE {target} IS {quote_literal(json.dumps(meta))}"
            )
        log.info(
            "table_created",
            table=definition.qualified_name,
            columns=len(definition.columns),
        )

    def alter_table(self, schema: str, table: str, columns: tuple[Column, ...]) -> None:
        target = qualified(schema, table)
        # Existing rows have no value for a new column, so it is always nullable
        with _wrap("alter_table"):
            for col in columns:
                self.conn.execute(
                    f"ALTER TABLE {target} ADD COLUMN {quote_ident(col.name)} {col.type}"
                )
                log.info("column_added", table=f"{schema}.{table}", column=col.name, type=col.type)

    def bulk_copy(self, source: SourceFileReference, gzip: bool, json_format: bool) -> int:
        """
        Insert the file's records into the table.

        Records are projected onto the table's current columns: keys the
        table doesn't have are ignored, missing keys load as NULL.
        """
        if not json_format:
            raise DriverError("bulk_copy", "only JSON-lines sources are supported")

        target = qualified(source.schema, source.table)
        with _wrap("bulk_copy"):
            rows = self.conn.execute(
                """
                SELECT column_name, data_type
                FROM information_schema.columns
                WHERE lower(table_schema) = lower(?) AND lower(table_name) = lower(?)
                ORDER BY ordinal_position
                """,
                [source.schema, source.table],
            ).fetchall()
            if not rows:
                raise DriverError("bulk_copy", f"table {source.qualified_name} does not exist")

            column_list = ", ".join(quote_ident(name) for name, _ in rows)
            column_types = ", ".join(
                f"{quote_literal(name)}: {quote_literal(data_type)}" for name, data_type in rows
            )
            compression = "gzip" if gzip else "none"

            result = self.conn.execute(
                f"""
                INSERT INTO {target} ({column_list})
                SELECT {column_list}
                FROM read_json(
                    {quote_literal(source.location)},
                    format = 'newline_delimited',
                    compression = '{compression}',
                    columns = {{{column_types}}}
                )
                """
            ).fetchone()

        row_count = result[0] if result else 0
        log.info(
            "bulk_copy_complete",
            table=source.qualified_name,
            location=source.location,
            rows=row_count,
        )
        return row_count

    def commit(self) -> None:
        with _wrap("commit"):
            self.conn.commit()

    def rollback(self) -> None:
        with _wrap("rollback"):
            self.conn.rollback()


class DuckDBDriver:
    """
    DuckDB warehouse driver.

    Used both for local development (filesystem sources) and with GCS
    sources through the httpfs extension.
    """

    def __init__(
        self,
        db_path: str,
        remote_sources: bool = False,
        gcs_key_id: str | None = None,
        gcs_secret: str | None = None,
    ) -> None:
        """
        Open the DuckDB database.

        Args:
            db_path: Path to the database file (":memory:" for tests)
            remote_sources: Load httpfs so gs:// files can be read
            gcs_key_id: GCS HMAC key id, used with gcs_secret
            gcs_secret: GCS HMAC secret
        """
        with _wrap("connect"):
            self.conn = duckdb.connect(db_path)
            # Freshness values are compared in UTC
            self.conn.execute("SET TimeZone = 'UTC'")
            if remote_sources:
                self._enable_gcs(gcs_key_id, gcs_secret)

    @classmethod
    def from_config(cls, config) -> "DuckDBDriver":
        return cls(
            config.warehouse_path,
            remote_sources=config.source_root.startswith("gs://"),
            gcs_key_id=config.gcs_hmac_key_id,
            gcs_secret=config.gcs_hmac_secret,
        )

    def _enable_gcs(self, key_id: str | None, secret: str | None) -> None:
        self.conn.execute("INSTALL httpfs")
        self.conn.execute("LOAD httpfs")
        if key_id and secret:
            self.conn.execute(
                f"CREATE OR REPLACE SECRET warehouse_loader_gcs "
                f"(TYPE GCS, KEY_ID {quote_literal(key_id)}, SECRET {quote_literal(secret)})"
            )

    def introspect_table(
        self, schema: str, table: str, freshness_column: str
    ) -> tuple[ObservedTable, FreshnessState]:
        with _wrap("introspect_table"):
            rows = self.conn.execute(
                """
                SELECT column_name, data_type, is_nullable
                FROM information_schema.columns
                WHERE lower(table_schema) = lower(?) AND lower(table_name) = lower(?)
                ORDER BY ordinal_position
                """,
                [schema, table],
            ).fetchall()

            if not rows:
                return ABSENT, FreshnessState.table_absent()

            comment = self.conn.execute(
                """
                SELECT comment FROM duckdb_tables()
                WHERE lower(schema_name) = lower(?) AND lower(table_name) = lower(?)
                """,
                [schema, table],
            ).fetchone()
            meta = _parse_comment(comment[0] if comment else None)

            definition = TableDefinition(
                schema=schema,
                name=table,
                columns=tuple(
                    Column(name, data_type, nullable=(is_nullable == "YES"))
                    for name, data_type, is_nullable in rows
                ),
                freshness_column=meta.get("freshness_column") or freshness_column,
                dist_key=meta.get("dist_key"),
                sort_keys=tuple(meta.get("sort_keys") or ()),
            )

            # A freshness column the table doesn't have yet means no prior data
            existing = definition.column(freshness_column)
            if existing is None:
                return TablePresent(definition), FreshnessState.no_rows()

            latest = self.conn.execute(
                f"SELECT timezone('UTC', CAST(MAX({quote_ident(existing.name)}) AS TIMESTAMPTZ)) "
                f"FROM {qualified(schema, table)}"
            ).fetchone()[0]

        if latest is None:
            return TablePresent(definition), FreshnessState.no_rows()
        return TablePresent(definition), FreshnessState.loaded(latest.replace(tzinfo=timezone.utc))

    def row_count(self, schema: str, table: str) -> int:
        with _wrap("row_count"):
            return self.conn.execute(f"SELECT count(*) FROM {qualified(schema, table)}").fetchone()[0]

    def begin_transaction(self) -> DuckDBTransaction:
        with _wrap("begin_transaction"):
            self.conn.begin()
        return DuckDBTransaction(self.conn)

    def close(self) -> None:
        self.conn.close()


def _parse_comment(comment: str | None) -> dict:
    """Table comments written by create_table hold JSON; anything else is ignored."""
    if not comment:
        return {}
    try:
        meta = json.loads(comment)
    except ValueError:
        return {}
    return meta if isinstance(meta, dict) else {}
