"""Place captured parts into live tables and attach them."""

from __future__ import annotations

from collections.abc import Sequence

from ch_restore.core.exceptions import (
    ChRestoreError,
    DestinationTableMissingError,
    PartPlacementError,
    RestoreError,
)
from ch_restore.core.models import Disk, LiveTable, TableDescriptor
from ch_restore.engines.base import BaseClient
from ch_restore.logging import get_logger
from ch_restore.restore.filesystem import Ownership, copy_data_to_detached
from ch_restore.restore.mapping import DatabaseMapping

log = get_logger(__name__)


def add_missing_disks(
        tables: Sequence[TableDescriptor],
        disks: Sequence[Disk],
        default_path: str,
) -> list[Disk]:
    """Return *disks* plus a stand-in on the default path for every unknown disk."""
    result = list(disks)
    known = {d.name for d in result}
    for table in tables:
        for disk_name in table.parts:
            if disk_name in known:
                continue
            log.warning(
                "disk_not_found",
                table=table.full_name,
                disk=disk_name,
                restore_path=default_path,
                hint="add the disk to `disk_mapping` in the `clickhouse` config section",
            )
            result.append(Disk(name=disk_name, path=default_path, type="local"))
            known.add(disk_name)
    return result


def find_missing_tables(
        tables: Sequence[TableDescriptor],
        live_tables: Sequence[LiveTable],
        mapping: DatabaseMapping,
) -> list[str]:
    """Destination names of captured tables that have no live counterpart."""
    live = {(t.database, t.name) for t in live_tables}
    return [
        f"{mapping.destination(t.database)}.{t.table}"
        for t in tables
        if (mapping.destination(t.database), t.table) not in live
    ]


def restore_data_regular(
        client: BaseClient,
        backup_name: str,
        table_pattern: str,
        tables: Sequence[TableDescriptor],
        disks: Sequence[Disk],
        default_path: str,
        mapping: DatabaseMapping,
        ownership: Ownership,
) -> None:
    """Stage each table's parts in ``detached`` and attach them.

    All destination tables are checked up front so one error lists every
    missing table. A failed ATTACH does not stop the remaining tables; the
    first such failure is raised once all tables were processed.
    """
    live_tables = client.get_tables(mapping.rewrite_table_pattern(table_pattern))
    disks = add_missing_disks(tables, disks, default_path)

    missing = find_missing_tables(tables, live_tables, mapping)
    if missing:
        raise DestinationTableMissingError(missing)

    live_by_name = {(t.database, t.name): t for t in live_tables}
    attach_errors: list[tuple[str, ChRestoreError]] = []

    for table in tables:
        destination_db = mapping.destination(table.database)
        bound = log.bind(table=f"{destination_db}.{table.table}")
        live_table = live_by_name[(destination_db, table.table)]

        try:
            copy_data_to_detached(backup_name, table, disks, live_table.data_paths, ownership)
        except PartPlacementError as exc:
            raise PartPlacementError(f"can't restore '{table.full_name}': {exc}") from exc
        bound.debug("copied_data_to_detached")

        destination = table.model_copy(update={"database": destination_db})
        try:
            client.attach_partitions(destination, disks)
        except ChRestoreError as exc:
            bound.error("attach_partitions_failed", error=str(exc))
            attach_errors.append((destination.full_name, exc))
            continue
        bound.info("table_data_restored")

    if attach_errors:
        name, cause = attach_errors[0]
        raise RestoreError(f"can't attach partitions for table '{name}': {cause}") from cause
