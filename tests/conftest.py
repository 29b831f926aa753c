"""Pytest configuration and shared fixtures."""

import copy
import gzip
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from warehouse_loader.errors import DriverError
from warehouse_loader.models import (
    ABSENT,
    Column,
    DeclaredColumn,
    FreshnessState,
    SourceFileReference,
    TableDefinition,
    TableMeta,
    TablePresent,
)


class FakeTransaction:
    """Works on a copy of the driver's tables; commit swaps it in."""

    def __init__(self, driver: "FakeDriver") -> None:
        self.driver = driver
        self.tables = copy.deepcopy(driver.tables)

    def _step(self, name: str, *args: Any) -> None:
        self.driver.calls.append((name, *args))
        if name in self.driver.fail_on:
            raise DriverError(name, "injected failure")

    def truncate(self, schema: str, table: str) -> None:
        self._step("truncate", f"{schema}.{table}")
        self.tables[(schema, table)]["rows"] = []

    def create_table(self, definition: TableDefinition) -> None:
        self._step("create_table", definition.qualified_name)
        self.tables[(definition.schema, definition.name)] = {
            "definition": definition,
            "rows": [],
        }

    def alter_table(self, schema: str, table: str, columns: tuple[Column, ...]) -> None:
        self._step("alter_table", f"{schema}.{table}", [c.name for c in columns])
        entry = self.tables[(schema, table)]
        current = entry["definition"]
        entry["definition"] = TableDefinition(
            schema=current.schema,
            name=current.name,
            columns=current.columns + tuple(columns),
            freshness_column=current.freshness_column,
            dist_key=current.dist_key,
            sort_keys=current.sort_keys,
        )

    def bulk_copy(self, source: SourceFileReference, gzip: bool, json_format: bool) -> int:
        self._step("bulk_copy", source.qualified_name, gzip, json_format)
        entry = self.tables[(source.schema, source.table)]
        rows = [
            {source.meta.freshness_column: source.data_date}
            for _ in range(self.driver.rows_per_copy)
        ]
        entry["rows"].extend(rows)
        return len(rows)

    def commit(self) -> None:
        self._step("commit")
        self.driver.tables = self.tables
        self.driver.commits += 1

    def rollback(self) -> None:
        self.driver.calls.append(("rollback",))
        self.driver.rollbacks += 1


class FakeDriver:
    """
    In-memory warehouse with transactional semantics.

    Records every call and can be told to fail any step by name.
    """

    def __init__(self) -> None:
        self.tables: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self.rows_per_copy = 3
        self.commits = 0
        self.rollbacks = 0

    def add_table(
        self,
        definition: TableDefinition,
        freshness: list[datetime] | None = None,
    ) -> None:
        rows = [{definition.freshness_column: value} for value in freshness or []]
        self.tables[(definition.schema, definition.name)] = {
            "definition": definition,
            "rows": rows,
        }

    def introspect_table(self, schema: str, table: str, freshness_column: str):
        self.calls.append(("introspect_table", f"{schema}.{table}"))
        if "introspect_table" in self.fail_on:
            raise DriverError("introspect_table", "injected failure")

        entry = self.tables.get((schema, table))
        if entry is None:
            return ABSENT, FreshnessState.table_absent()

        values = [r[freshness_column] for r in entry["rows"] if r.get(freshness_column)]
        state = FreshnessState.loaded(max(values)) if values else FreshnessState.no_rows()
        return TablePresent(entry["definition"]), state

    def begin_transaction(self) -> FakeTransaction:
        self.calls.append(("begin",))
        return FakeTransaction(self)

    def ddl_calls(self) -> list[str]:
        """Names of the write operations issued, in order."""
        writes = {"truncate", "create_table", "alter_table", "bulk_copy", "commit"}
        return [c[0] for c in self.calls if c[0] in writes]


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def jan_first() -> datetime:
    return datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_source(
    data_date: datetime,
    columns: list[tuple[str, str]] | None = None,
    location: str = "/exports/mongo/users/20240101T000000Z.json.gz",
    schema: str = "mongo",
    table: str = "users",
    **meta: Any,
) -> SourceFileReference:
    """A source file with id/val/loaded_at columns unless told otherwise."""
    if columns is None:
        columns = [("id", "int"), ("val", "string"), ("loaded_at", "timestamp")]
    meta.setdefault("freshness_column", "loaded_at")
    return SourceFileReference(
        schema=schema,
        table=table,
        location=location,
        data_date=data_date,
        columns=tuple(DeclaredColumn(name, col_type) for name, col_type in columns),
        meta=TableMeta(**meta),
    )


def write_jsonl_gz(path: Path, records: list[dict[str, Any]]) -> Path:
    """Write records as gzipped JSON lines, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with gzip.open(path, "wt", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
    return path
