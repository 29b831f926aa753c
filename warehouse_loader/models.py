"""
Value objects shared by the loader components.

Everything here is immutable and owned by the call that produced it:
- SourceFileReference: what the file locator found
- TableDefinition: a desired (from declarations) or observed (from the warehouse) table
- ObservedTable: explicit Absent / Present variant for the destination table
- FreshnessState: latest logical date already loaded, or why there is none
- LoadDecision / LoadOutcome: per-attempt decision and result
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from warehouse_loader.errors import LoaderError, SchemaError


@dataclass(frozen=True)
class DeclaredColumn:
    """A column as declared by the exporter: name plus semantic type."""
    name: str
    type: str                   # Semantic type, e.g. "int", "string", "timestamp"
    not_null: bool = False


@dataclass(frozen=True)
class TableMeta:
    """Per-table load settings that travel with the declarations."""
    freshness_column: str
    truncate: bool = False              # Dimension tables are reloaded in full
    dist_key: str | None = None
    sort_keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class SourceFileReference:
    """
    The latest eligible source file for one (schema, table).

    Produced once per invocation by the file locator and never modified.
    """
    schema: str
    table: str
    location: str               # Local path or gs:// URI
    data_date: datetime         # Logical date, timezone aware
    columns: tuple[DeclaredColumn, ...]
    meta: TableMeta

    @property
    def gzip(self) -> bool:
        return self.location.endswith(".gz")

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}"


@dataclass(frozen=True)
class Column:
    """A warehouse column."""
    name: str
    type: str                   # Warehouse type, e.g. "INTEGER", "VARCHAR"
    nullable: bool = True


@dataclass(frozen=True)
class TableDefinition:
    """Columns and keys of a warehouse table."""
    schema: str
    name: str
    columns: tuple[Column, ...]
    freshness_column: str
    dist_key: str | None = None
    sort_keys: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.columns:
            raise SchemaError(
                f"table {self.schema}.{self.name} has no columns",
                table=self.qualified_name,
            )

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def column(self, name: str) -> Column | None:
        """Case-insensitive column lookup."""
        wanted = name.lower()
        for col in self.columns:
            if col.name.lower() == wanted:
                return col
        return None


@dataclass(frozen=True)
class TableAbsent:
    """The destination table does not exist yet."""


@dataclass(frozen=True)
class TablePresent:
    """The destination table exists with this definition."""
    definition: TableDefinition


ObservedTable = TableAbsent | TablePresent

ABSENT = TableAbsent()


class FreshnessStatus(Enum):
    TABLE_ABSENT = "table_absent"
    NO_ROWS = "no_rows"             # Table exists, no freshness value in it
    LOADED = "loaded"


@dataclass(frozen=True)
class FreshnessState:
    """Most recent logical date already loaded into a table."""
    status: FreshnessStatus
    latest: datetime | None = None

    @classmethod
    def table_absent(cls) -> "FreshnessState":
        return cls(FreshnessStatus.TABLE_ABSENT)

    @classmethod
    def no_rows(cls) -> "FreshnessState":
        return cls(FreshnessStatus.NO_ROWS)

    @classmethod
    def loaded(cls, latest: datetime) -> "FreshnessState":
        return cls(FreshnessStatus.LOADED, latest)

    @property
    def has_prior_data(self) -> bool:
        return self.status is FreshnessStatus.LOADED


@dataclass(frozen=True)
class LoadDecision:
    """What one load attempt is going to do. Never persisted."""
    proceed: bool
    create_table: bool
    truncate: bool

    def __post_init__(self) -> None:
        # A table that does not exist yet cannot be truncated
        if self.truncate and self.create_table:
            raise ValueError("truncate cannot be combined with create_table")


class LoadStatus(Enum):
    COMMITTED = "committed"
    SKIPPED_ALREADY_FRESH = "skipped_already_fresh"
    FAILED = "failed"
    NO_SOURCE_FILE = "no_source_file"   # Reported by load_tables only


@dataclass(frozen=True)
class LoadOutcome:
    """Result of one run_load call."""
    status: LoadStatus
    reason: str | None = None
    error: LoaderError | None = field(default=None, compare=False)

    @classmethod
    def committed(cls) -> "LoadOutcome":
        return cls(LoadStatus.COMMITTED)

    @classmethod
    def skipped_already_fresh(cls, reason: str) -> "LoadOutcome":
        return cls(LoadStatus.SKIPPED_ALREADY_FRESH, reason)

    @classmethod
    def failed(cls, error: LoaderError) -> "LoadOutcome":
        return cls(LoadStatus.FAILED, str(error), error)

    @property
    def ok(self) -> bool:
        return self.status is not LoadStatus.FAILED
