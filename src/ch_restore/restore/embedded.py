"""Delegate restore to the server's native ``RESTORE ... FROM Disk(...)``."""

from __future__ import annotations

from collections.abc import Sequence

from ch_restore.core.exceptions import ChRestoreError, EmbeddedRestoreError
from ch_restore.core.models import ObjectKind, TableDescriptor
from ch_restore.core.utils import quote_identifier, quote_string
from ch_restore.engines.base import BaseClient
from ch_restore.logging import get_logger
from ch_restore.restore.mapping import DatabaseMapping

log = get_logger(__name__)

RESTORED_STATUS = "RESTORED"


def build_restore_statement(
        backup_name: str,
        disk: str,
        tables: Sequence[TableDescriptor],
        mapping: DatabaseMapping,
        partitions: Sequence[str] = (),
        schema_only: bool = False,
) -> str:
    """Build one RESTORE statement covering every table with captured DDL."""
    entries: list[str] = []
    for table in tables:
        if not table.query:
            continue
        kind = "DICTIONARY" if table.kind == ObjectKind.DICTIONARY else "TABLE"
        entry = f"{kind} {quote_identifier(table.database)}.{quote_identifier(table.table)}"
        if mapping.is_mapped(table.database):
            entry += (
                f" AS {quote_identifier(mapping.destination(table.database))}"
                f".{quote_identifier(table.table)}"
            )
        if table.kind == ObjectKind.TABLE and partitions:
            entry += " PARTITIONS " + ",".join(quote_string(p) for p in partitions)
        entries.append(entry)

    sql = (
        f"RESTORE {', '.join(entries)} "
        f"FROM Disk({quote_string(disk)}, {quote_string(backup_name)})"
    )
    if schema_only:
        sql += " SETTINGS structure_only=true"
    return sql


def restore_embedded(
        client: BaseClient,
        backup_name: str,
        disk: str,
        tables: Sequence[TableDescriptor],
        mapping: DatabaseMapping,
        partitions: Sequence[str] = (),
        schema_only: bool = False,
) -> None:
    """Submit the native RESTORE and require the ``RESTORED`` status.

    Raises:
        EmbeddedRestoreError: If the statement fails or reports another status.
    """
    sql = build_restore_statement(backup_name, disk, tables, mapping, partitions, schema_only)
    log.info("embedded_restore_start", disk=disk, tables=len(tables), schema_only=schema_only)
    try:
        results = client.query(sql)
    except ChRestoreError as exc:
        raise EmbeddedRestoreError(f"restore error: {exc}") from exc
    if not results or results[0].get("status") != RESTORED_STATUS:
        raise EmbeddedRestoreError(f"restore wrong result: {results}", results)
    log.info("embedded_restore_complete", id=results[0].get("id", ""))
