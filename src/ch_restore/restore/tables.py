"""Load captured table metadata from a backup and select tables by pattern."""

from __future__ import annotations

import fnmatch
import json
from collections.abc import Callable, Sequence
from pathlib import Path

from pydantic import ValidationError

from ch_restore.core.exceptions import (
    MetadataNotADirectoryError,
    MetadataNotFoundError,
    RestoreError,
)
from ch_restore.core.models import (
    SYSTEM_DATABASES,
    BackupMetadata,
    LiveTable,
    Part,
    TableDescriptor,
)
from ch_restore.core.utils import match_table_pattern, table_path_decode
from ch_restore.logging import get_logger
from ch_restore.restore import ddl
from ch_restore.restore.mapping import DatabaseMapping
from ch_restore.restore.partitions import is_part_in_partitions

log = get_logger(__name__)

TableFilter = Callable[[TableDescriptor], bool]


def load_backup_metadata(path: Path) -> BackupMetadata:
    """Read a ``metadata.json`` manifest.

    Raises:
        FileNotFoundError: If the manifest does not exist (legacy backup).
        RestoreError: If the manifest cannot be read or parsed.
    """
    try:
        body = path.read_bytes()
    except FileNotFoundError:
        raise
    except OSError as exc:
        raise RestoreError(f"can't read {path}: {exc}") from exc
    try:
        return BackupMetadata.model_validate_json(body)
    except ValidationError as exc:
        raise RestoreError(f"invalid backup manifest {path}: {exc}") from exc


def _read_table_file(path: Path, database_dir: Path) -> TableDescriptor:
    try:
        if path.suffix == ".sql":
            return TableDescriptor(
                database=table_path_decode(database_dir.name),
                table=table_path_decode(path.stem),
                query=path.read_text(encoding="utf-8"),
            )
        return TableDescriptor.model_validate_json(path.read_bytes())
    except (OSError, ValidationError, json.JSONDecodeError) as exc:
        raise RestoreError(f"can't read table metadata {path}: {exc}") from exc


def get_table_list_by_pattern_local(
        metadata_path: Path,
        table_pattern: str = "*",
        skip_tables: Sequence[str] = (),
        exclude: TableFilter | None = None,
) -> list[TableDescriptor]:
    """Return captured tables under *metadata_path* matching *table_pattern*.

    The directory holds ``<encoded-db>/<encoded-table>.json`` files; legacy
    ``.sql`` files are read as bare DDL. Tables matching any ``skip_tables``
    glob, or for which *exclude* returns True, are left out. Order is the
    sorted on-disk order.
    """
    if not metadata_path.exists():
        raise MetadataNotFoundError(f"{metadata_path} does not exist")
    if not metadata_path.is_dir():
        raise MetadataNotADirectoryError(f"{metadata_path} is not a dir")

    tables: list[TableDescriptor] = []
    for database_dir in sorted(p for p in metadata_path.iterdir() if p.is_dir()):
        files = sorted(database_dir.iterdir())
        json_stems = {f.stem for f in files if f.suffix == ".json"}
        for table_file in files:
            if table_file.suffix not in (".json", ".sql"):
                continue
            if table_file.suffix == ".sql" and table_file.stem in json_stems:
                continue
            table = _read_table_file(table_file, database_dir)
            if not match_table_pattern(table.full_name, table_pattern or "*"):
                continue
            if any(fnmatch.fnmatchcase(table.full_name, s) for s in skip_tables):
                log.debug("table_skipped", table=table.full_name)
                continue
            if exclude is not None and exclude(table):
                continue
            tables.append(table)
    return tables


def get_backup_tables_legacy(shadow_path: Path, table_pattern: str = "*") -> list[TableDescriptor]:
    """Tables of a backup without ``metadata.json``: ``shadow/<db>/<table>/<part>``.

    All parts of a legacy backup live on the ``default`` disk.
    """
    if not shadow_path.is_dir():
        raise MetadataNotFoundError(f"{shadow_path} does not exist")
    tables: list[TableDescriptor] = []
    for database_dir in sorted(p for p in shadow_path.iterdir() if p.is_dir()):
        for table_dir in sorted(p for p in database_dir.iterdir() if p.is_dir()):
            table = TableDescriptor(
                database=table_path_decode(database_dir.name),
                table=table_path_decode(table_dir.name),
                parts={
                    "default": [
                        Part(name=p.name) for p in sorted(table_dir.iterdir()) if p.is_dir()
                    ]
                },
            )
            if match_table_pattern(table.full_name, table_pattern or "*"):
                tables.append(table)
    return tables


def is_clickhouse_shadow(shadow_path: Path) -> bool:
    """Detect a raw ``ALTER TABLE ... FREEZE`` shadow tree (``<N>/data/...``)."""
    if not shadow_path.is_dir():
        return False
    if (shadow_path / "increment.txt").is_file():
        return True
    return any(
        child.is_dir() and child.name.isdigit() and (child / "data").is_dir()
        for child in shadow_path.iterdir()
    )


def filter_parts(tables: Sequence[TableDescriptor], partition_ids: set[str]) -> list[TableDescriptor]:
    """Keep only parts whose partition id is in *partition_ids* (all when empty)."""
    if not partition_ids:
        return list(tables)
    return [
        t.model_copy(update={
            "parts": {
                disk: [p for p in parts if is_part_in_partitions(p, partition_ids)]
                for disk, parts in t.parts.items()
            }
        })
        for t in tables
    ]


def adjust_database_mapping(
        tables: Sequence[TableDescriptor],
        mapping: DatabaseMapping,
) -> list[TableDescriptor]:
    """Return copies of *tables* rewritten for their destination databases.

    Every qualifier naming a mapped database is rewritten, and tables that
    move to another database lose their explicit UUID.
    """
    if not mapping:
        return list(tables)
    adjusted: list[TableDescriptor] = []
    for table in tables:
        query = ddl.rewrite_database_references(table.query, mapping)
        if mapping.is_mapped(table.database):
            query = ddl.drop_explicit_uuid(query)
        adjusted.append(
            table.model_copy(update={"database": mapping.destination(table.database), "query": query})
        )
    return adjusted


def is_system_table(table: TableDescriptor) -> bool:
    return table.database in SYSTEM_DATABASES


def is_skipped_live_table(table: LiveTable, skip_tables: Sequence[str] = ()) -> bool:
    """System tables and those matching a ``skip_tables`` glob take no part in a restore."""
    if table.database in SYSTEM_DATABASES:
        return True
    return any(fnmatch.fnmatchcase(table.full_name, skip) for skip in skip_tables)


def should_skip_database(database: str, table_pattern: str, skip_tables: Sequence[str] = ()) -> bool:
    """A database is skipped when it is a system one or no pattern entry can reach it."""
    if database in SYSTEM_DATABASES:
        return True
    for skip in skip_tables:
        db_part, _, table_part = skip.partition(".")
        if table_part == "*" and fnmatch.fnmatchcase(database, db_part):
            return True
    patterns = [p.strip() for p in table_pattern.split(",") if p.strip()]
    if not patterns:
        return False
    return not any(fnmatch.fnmatchcase(database, p.partition(".")[0]) for p in patterns)
