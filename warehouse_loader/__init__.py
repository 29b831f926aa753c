"""
Warehouse Loader - incremental loads of exported data files into a columnar warehouse.

Finds the latest exported JSON-lines file for each requested table, reconciles
the declared columns against the existing destination table, and loads the file
inside a single transaction:

1. Skip the load when the table already holds data at least as fresh
2. Create the table, or add the columns it is missing
3. Optionally truncate (dimension tables)
4. Bulk copy the file and commit

Usage:
    warehouse-loader --schema mongo --tables users,orders

Environment Variables:
    SOURCE_ROOT: Where exported files live (local dir or gs://bucket/prefix)
    WAREHOUSE_PATH: DuckDB database file (default: warehouse.duckdb)
    TABLE_CONFIG_PATH: Directory with table declaration YAML files
"""

__version__ = "0.1.0"
