"""
Configuration management for the loader.

This module handles:
- Loading environment variables into a frozen Config dataclass
- Parsing table declaration YAML (columns, freshness column, keys, truncate)
- Loading every declaration file in a directory tree into one mapping
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from warehouse_loader.errors import SchemaError
from warehouse_loader.models import DeclaredColumn, TableMeta


@dataclass(frozen=True)
class Config:
    """
    Process configuration, built once and passed explicitly.

    Nothing below the CLI reads the environment.
    """
    source_root: str                    # Local dir or gs://bucket/prefix with exported files
    warehouse_path: str                 # DuckDB database file
    table_config_path: str | None = None    # Directory (or file) of table declarations
    gcs_hmac_key_id: str | None = None  # Lets the warehouse read gs:// sources
    gcs_hmac_secret: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Required:
            SOURCE_ROOT: Where exported files live

        Optional:
            WAREHOUSE_PATH: DuckDB database file (default: warehouse.duckdb)
            TABLE_CONFIG_PATH: Table declarations (default: sidecar files only)
            GCS_HMAC_KEY_ID / GCS_HMAC_SECRET: Credentials for gs:// sources
            LOG_LEVEL: Logging level (default: INFO)
        """
        return cls(
            source_root=os.environ["SOURCE_ROOT"],
            warehouse_path=os.environ.get("WAREHOUSE_PATH", "warehouse.duckdb"),
            table_config_path=os.environ.get("TABLE_CONFIG_PATH") or None,
            gcs_hmac_key_id=os.environ.get("GCS_HMAC_KEY_ID") or None,
            gcs_hmac_secret=os.environ.get("GCS_HMAC_SECRET") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


def read_yaml(content: str | bytes, origin: str) -> Any:
    """
    Parse declaration YAML.

    Raises:
        SchemaError: If the content is not valid YAML
    """
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SchemaError(f"{origin}: invalid YAML: {e}") from e


@dataclass(frozen=True)
class TableDeclaration:
    """Declared columns and load settings for one table."""
    columns: tuple[DeclaredColumn, ...]
    meta: TableMeta


def parse_declaration(raw: Any, origin: str) -> TableDeclaration:
    """
    Parse one table declaration body.

    Example:
        freshness_column: _data_timestamp
        truncate: true
        dist_key: id
        sort_keys: [id]
        columns:
          - {name: id, type: int, not_null: true}
          - {name: _data_timestamp, type: timestamp}

    Args:
        raw: The YAML body (a mapping)
        origin: Where it came from, for error messages

    Raises:
        SchemaError: If required keys are missing or have the wrong shape
    """
    if not isinstance(raw, dict):
        raise SchemaError(f"{origin}: declaration must be a mapping")

    if not raw.get("freshness_column"):
        raise SchemaError(f"{origin}: missing freshness_column")

    raw_columns = raw.get("columns")
    if not isinstance(raw_columns, list) or not raw_columns:
        raise SchemaError(f"{origin}: columns must be a non-empty list")

    columns = []
    for entry in raw_columns:
        if not isinstance(entry, dict) or "name" not in entry or "type" not in entry:
            raise SchemaError(f"{origin}: every column needs a name and a type")
        columns.append(DeclaredColumn(
            name=str(entry["name"]),
            type=str(entry["type"]),
            not_null=bool(entry.get("not_null", False)),
        ))

    dist_key = raw.get("dist_key")
    if dist_key is not None and not isinstance(dist_key, str):
        raise SchemaError(f"{origin}: dist_key must be a column name")

    sort_keys = raw.get("sort_keys") or []
    if isinstance(sort_keys, str):
        sort_keys = [sort_keys]
    if not isinstance(sort_keys, list) or not all(isinstance(k, str) for k in sort_keys):
        raise SchemaError(f"{origin}: sort_keys must be a column name or a list of them")

    return TableDeclaration(
        columns=tuple(columns),
        meta=TableMeta(
            freshness_column=str(raw["freshness_column"]),
            truncate=bool(raw.get("truncate", False)),
            dist_key=dist_key,
            sort_keys=tuple(sort_keys),
        ),
    )


def load_table_mapping(root_path: str) -> dict[str, TableDeclaration]:
    """
    Load all table declarations from YAML files under ``root_path``.

    Walks the directory tree looking for *.yaml and *.yml files and merges
    them into one mapping keyed by "schema.table" (lowercased). A single
    file path is also accepted.

    Example YAML:

        mongo.users:
          freshness_column: _data_timestamp
          columns:
            - {name: id, type: int}
            - {name: _data_timestamp, type: timestamp}
    """
    root = Path(root_path)
    if root.is_file():
        paths = [root]
    else:
        paths = sorted([*root.rglob("*.yaml"), *root.rglob("*.yml")])

    result = {}
    for yaml_path in paths:
        try:
            text = yaml_path.read_text()
        except OSError as e:
            raise SchemaError(f"{yaml_path}: cannot read declarations: {e}") from e
        raw = read_yaml(text, str(yaml_path))

        # Skip empty files
        if not raw:
            continue

        if not isinstance(raw, dict):
            raise SchemaError(f"{yaml_path}: expected a mapping of schema.table entries")

        for key, body in raw.items():
            if "." not in str(key):
                raise SchemaError(f"{yaml_path}: key {key!r} must be schema.table")
            result[str(key).lower()] = parse_declaration(body, f"{yaml_path}:{key}")

    return result
