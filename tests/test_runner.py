"""Tests for run_load and load_tables against the in-memory driver."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import FakeDriver, make_source
from warehouse_loader.definition import build_table_definition
from warehouse_loader.errors import NotFoundError, SchemaError, StructuralConflictError
from warehouse_loader.locator import FileLocator
from warehouse_loader.models import Column, LoadStatus, TableDefinition
from warehouse_loader.runner import load_tables, run_load
from warehouse_loader.storage import LocalStorage


def existing_users(*extra: Column) -> TableDefinition:
    return TableDefinition(
        schema="mongo",
        name="users",
        columns=(
            Column("id", "INTEGER"),
            Column("val", "VARCHAR"),
            Column("loaded_at", "TIMESTAMP WITH TIME ZONE"),
            *extra,
        ),
        freshness_column="loaded_at",
    )


class TestRunLoad:
    """Tests for run_load."""

    def test_absent_table_created_and_committed(self, fake_driver: FakeDriver, jan_first) -> None:
        outcome = run_load(fake_driver, make_source(jan_first))

        assert outcome.status is LoadStatus.COMMITTED
        assert fake_driver.ddl_calls() == ["create_table", "bulk_copy", "commit"]
        created = fake_driver.tables[("mongo", "users")]["definition"]
        assert [c.name for c in created.columns] == ["id", "val", "loaded_at"]

    def test_second_run_with_same_file_is_skipped(self, fake_driver: FakeDriver, jan_first) -> None:
        source = make_source(jan_first)

        first = run_load(fake_driver, source)
        writes_after_first = fake_driver.ddl_calls()
        second = run_load(fake_driver, source)

        assert first.status is LoadStatus.COMMITTED
        assert second.status is LoadStatus.SKIPPED_ALREADY_FRESH
        assert fake_driver.ddl_calls() == writes_after_first

    def test_equal_date_skipped_without_any_writes(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users(), freshness=[jan_first])

        outcome = run_load(fake_driver, make_source(jan_first))

        assert outcome.status is LoadStatus.SKIPPED_ALREADY_FRESH
        assert outcome.ok
        assert "2024-01-01" in outcome.reason
        assert fake_driver.ddl_calls() == []
        assert ("begin",) not in fake_driver.calls

    def test_force_loads_stale_file(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users(), freshness=[jan_first])

        outcome = run_load(fake_driver, make_source(jan_first - timedelta(days=1)), force=True)

        assert outcome.status is LoadStatus.COMMITTED
        assert fake_driver.ddl_calls() == ["bulk_copy", "commit"]

    def test_newer_file_with_new_column_alters_table(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users(), freshness=[jan_first])
        source = make_source(
            jan_first + timedelta(days=1),
            columns=[("id", "int"), ("val", "string"), ("region", "string"), ("loaded_at", "timestamp")],
        )

        outcome = run_load(fake_driver, source)

        assert outcome.status is LoadStatus.COMMITTED
        assert ("alter_table", "mongo.users", ["region"]) in fake_driver.calls
        assert fake_driver.ddl_calls() == ["alter_table", "bulk_copy", "commit"]

    def test_truncate_existing_table(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users(), freshness=[jan_first])

        run_load(fake_driver, make_source(jan_first + timedelta(days=1)), truncate=True)

        assert fake_driver.ddl_calls() == ["truncate", "bulk_copy", "commit"]
        assert len(fake_driver.tables[("mongo", "users")]["rows"]) == fake_driver.rows_per_copy

    def test_truncate_never_attempted_on_new_table(self, fake_driver: FakeDriver, jan_first) -> None:
        outcome = run_load(fake_driver, make_source(jan_first), truncate=True)

        assert outcome.status is LoadStatus.COMMITTED
        assert "truncate" not in fake_driver.ddl_calls()

    def test_empty_table_loads(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users())

        outcome = run_load(fake_driver, make_source(jan_first))

        assert outcome.status is LoadStatus.COMMITTED

    def test_type_conflict_fails_before_any_write(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(
            TableDefinition(
                schema="mongo",
                name="users",
                columns=(Column("id", "VARCHAR"), Column("loaded_at", "TIMESTAMP WITH TIME ZONE")),
                freshness_column="loaded_at",
            ),
            freshness=[jan_first],
        )

        outcome = run_load(fake_driver, make_source(jan_first + timedelta(days=1)))

        assert outcome.status is LoadStatus.FAILED
        assert isinstance(outcome.error, StructuralConflictError)
        assert outcome.error.column == "id"
        assert ("begin",) not in fake_driver.calls

    def test_schema_error_fails(self, fake_driver: FakeDriver, jan_first) -> None:
        source = make_source(jan_first, freshness_column="exported_at")

        outcome = run_load(fake_driver, source)

        assert outcome.status is LoadStatus.FAILED
        assert isinstance(outcome.error, SchemaError)
        assert not outcome.ok
        assert fake_driver.calls == []

    def test_copy_failure_leaves_table_unchanged(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users(), freshness=[jan_first])
        before = fake_driver.tables[("mongo", "users")]
        fake_driver.fail_on.add("bulk_copy")
        source = make_source(
            jan_first + timedelta(days=1),
            columns=[("id", "int"), ("region", "string"), ("loaded_at", "timestamp")],
        )

        outcome = run_load(fake_driver, source)

        assert outcome.status is LoadStatus.FAILED
        after = fake_driver.tables[("mongo", "users")]
        assert after["definition"] == before["definition"]
        assert after["rows"] == before["rows"]

    def test_driver_error_on_introspection_fails(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.fail_on.add("introspect_table")

        outcome = run_load(fake_driver, make_source(jan_first))

        assert outcome.status is LoadStatus.FAILED
        assert "introspect_table" in outcome.reason


class StubLocator:
    """Returns canned sources; tables it doesn't know have no file."""

    def __init__(self, sources: dict) -> None:
        self.sources = sources
        self.requests: list[tuple] = []

    def resolve_latest_file(self, schema, table, data_date=None):
        self.requests.append((schema, table, data_date))
        result = self.sources.get(table)
        if result is None:
            raise NotFoundError(schema, table)
        if isinstance(result, Exception):
            raise result
        return result


class TestLoadTables:
    """Tests for load_tables."""

    def test_tables_processed_in_order_and_independently(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users(), freshness=[jan_first])
        locator = StubLocator({
            "users": make_source(jan_first),
            "broken": SchemaError("mongo.broken: missing freshness_column"),
            "orders": make_source(jan_first, table="orders"),
        })

        results = load_tables(
            fake_driver, locator, "mongo", ["users", "missing", "broken", "orders"]
        )

        assert [r.table for r in results] == [
            "mongo.users", "mongo.missing", "mongo.broken", "mongo.orders",
        ]
        assert [r.outcome.status for r in results] == [
            LoadStatus.SKIPPED_ALREADY_FRESH,
            LoadStatus.NO_SOURCE_FILE,
            LoadStatus.FAILED,
            LoadStatus.COMMITTED,
        ]

    def test_declared_truncate_applies(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users(), freshness=[jan_first])
        locator = StubLocator({"users": make_source(jan_first + timedelta(days=1), truncate=True)})

        load_tables(fake_driver, locator, "mongo", ["users"])

        assert "truncate" in fake_driver.ddl_calls()

    def test_date_and_force_passed_through(self, fake_driver: FakeDriver, jan_first) -> None:
        fake_driver.add_table(existing_users(), freshness=[jan_first])
        locator = StubLocator({"users": make_source(jan_first)})
        wanted = datetime(2024, 1, 1, tzinfo=timezone.utc)

        results = load_tables(fake_driver, locator, "mongo", ["users"], force=True, data_date=wanted)

        assert locator.requests == [("mongo", "users", wanted)]
        assert results[0].outcome.status is LoadStatus.COMMITTED

    def test_unreadable_sidecar_fails_only_its_table(self, fake_driver: FakeDriver, tmp_path: Path) -> None:
        sidecar = (
            "freshness_column: loaded_at\n"
            "columns:\n"
            "  - {name: id, type: int}\n"
            "  - {name: loaded_at, type: timestamp}\n"
        )
        for table, body in (("bad", "columns: [unclosed"), ("good", sidecar)):
            table_dir = tmp_path / "mongo" / table
            table_dir.mkdir(parents=True)
            (table_dir / "20240101T000000Z.json.gz").write_bytes(b"")
            (table_dir / "20240101T000000Z.yml").write_text(body)
        locator = FileLocator(LocalStorage(), str(tmp_path))

        results = load_tables(fake_driver, locator, "mongo", ["bad", "good"])

        assert [r.outcome.status for r in results] == [LoadStatus.FAILED, LoadStatus.COMMITTED]
        assert isinstance(results[0].outcome.error, SchemaError)
        assert "invalid YAML" in results[0].outcome.reason
