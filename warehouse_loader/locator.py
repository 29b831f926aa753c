"""
Find the latest exported file for a table.

Exports are laid out as:

    <root>/<schema>/<table>/<YYYYMMDDTHHMMSSZ>.json.gz
    <root>/<schema>/<table>/<YYYYMMDDTHHMMSSZ>.yml     (optional sidecar)

The stamp is the file's logical date in UTC. The sidecar, written by the
exporter, declares the file's columns; an entry in the table mapping for
the same schema.table takes precedence over it.
"""

import re
from datetime import datetime, timezone
from pathlib import PurePosixPath

import structlog

from warehouse_loader.config import TableDeclaration, parse_declaration, read_yaml
from warehouse_loader.errors import NotFoundError, SchemaError
from warehouse_loader.models import SourceFileReference
from warehouse_loader.storage import Storage

log = structlog.get_logger()

STAMP_FORMAT = "%Y%m%dT%H%M%SZ"
DATA_FILE = re.compile(r"^(?P<stamp>\d{8}T\d{6}Z)\.(?:json|jsonl)(?:\.gz)?$")


def format_stamp(data_date: datetime) -> str:
    return data_date.astimezone(timezone.utc).strftime(STAMP_FORMAT)


def parse_stamp(stamp: str) -> datetime:
    return datetime.strptime(stamp, STAMP_FORMAT).replace(tzinfo=timezone.utc)


class FileLocator:
    """Resolves the file to load for a (schema, table)."""

    def __init__(
        self,
        storage: Storage,
        root: str,
        mapping: dict[str, TableDeclaration] | None = None,
    ) -> None:
        self.storage = storage
        self.root = root
        self.mapping = mapping or {}

    def resolve_latest_file(
        self, schema: str, table: str, data_date: datetime | None = None
    ) -> SourceFileReference:
        """
        Return the newest data file for ``schema.table``.

        Args:
            schema: Logical schema name
            table: Logical table name
            data_date: Pick the file with exactly this logical date instead

        Raises:
            NotFoundError: If no matching file exists
            SchemaError: If the file has no column declarations
        """
        directory = self.storage.join(self.storage.join(self.root, schema), table)

        candidates: dict[datetime, list[str]] = {}
        for path in self.storage.list_files(directory):
            name = PurePosixPath(path).name
            match = DATA_FILE.match(name)
            if not match:
                log.debug("file_ignored", path=path)
                continue
            candidates.setdefault(parse_stamp(match.group("stamp")), []).append(path)

        if data_date is not None:
            wanted = data_date.astimezone(timezone.utc).replace(microsecond=0)
            if wanted not in candidates:
                raise NotFoundError(schema, table, f"nothing dated {wanted.isoformat()}")
            chosen = wanted
        elif candidates:
            chosen = max(candidates)
        else:
            raise NotFoundError(schema, table, f"no files under {directory}")

        # Two exports for one logical date (e.g. .json and .json.gz) can't both be the latest
        if len(candidates[chosen]) > 1:
            raise SchemaError(
                f"{schema}.{table}: several files for {chosen.isoformat()}: "
                f"{', '.join(sorted(candidates[chosen]))}",
                table=f"{schema}.{table}",
            )
        location = candidates[chosen][0]
        declaration = self._declaration(schema, table, directory, chosen)

        log.info(
            "source_file_resolved",
            table=f"{schema}.{table}",
            location=location,
            data_date=chosen.isoformat(),
        )
        return SourceFileReference(
            schema=schema,
            table=table,
            location=location,
            data_date=chosen,
            columns=declaration.columns,
            meta=declaration.meta,
        )

    def _declaration(
        self, schema: str, table: str, directory: str, data_date: datetime
    ) -> TableDeclaration:
        key = f"{schema}.{table}".lower()
        if key in self.mapping:
            return self.mapping[key]

        sidecar = self.storage.join(directory, f"{format_stamp(data_date)}.yml")
        if sidecar not in self.storage.list_files(directory):
            raise SchemaError(
                f"{schema}.{table}: no declaration in the table mapping and no sidecar {sidecar}",
                table=f"{schema}.{table}",
            )

        try:
            content = self.storage.read_file(sidecar)
        except OSError as e:
            raise SchemaError(f"{sidecar}: cannot read declarations: {e}", table=f"{schema}.{table}") from e
        raw = read_yaml(content, sidecar)
        return parse_declaration(raw, sidecar)
