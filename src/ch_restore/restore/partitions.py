"""Resolve ``--partitions`` arguments into engine partition identifiers."""

from __future__ import annotations

import re
from collections.abc import Sequence

from ch_restore.core.exceptions import ChRestoreError
from ch_restore.core.models import LiveTable, Part, TableDescriptor
from ch_restore.engines.base import BaseClient
from ch_restore.logging import get_logger
from ch_restore.restore.mapping import DatabaseMapping

log = get_logger(__name__)

_TUPLE_SEPARATOR_RE = re.compile(r"\)\s*,\s*\(")


def resolve_partitions(
        client: BaseClient,
        partitions: Sequence[str],
        live_tables: Sequence[LiveTable],
        captured_tables: Sequence[TableDescriptor],
        mapping: DatabaseMapping | None = None,
) -> tuple[set[str], list[str]]:
    """Turn raw partition filters into a set of partition ids.

    Two argument forms are accepted and may be repeated:

    * ``202301,202302`` - literal partition ids, used verbatim.
    * ``('2023-01-15'),('2023-02-15')`` - values of the partition-key columns.
      Each tuple is evaluated by the server against every live and every
      captured table, so hashed partition ids come out right.

    Returns the id set and the same ids as a sorted list. If any tuple
    evaluation fails the set is empty and the raw arguments are returned
    unchanged; an empty set means "all partitions".
    """
    if not partitions:
        return set(), list(partitions)

    mapping = mapping or DatabaseMapping()
    resolved: set[str] = set()

    for argument in partitions:
        argument = argument.strip(" \t")
        if not argument.startswith("("):
            resolved.update(item.strip(" \t") for item in argument.split(",") if item.strip(" \t"))
            continue

        argument = argument.removeprefix("(").removesuffix(")")
        for partition_tuple in _TUPLE_SEPARATOR_RE.split(argument):
            targets = [
                (t.database, t.name, t.create_table_query) for t in live_tables
            ] + [
                (mapping.destination(t.database), t.table, t.query) for t in captured_tables
            ]
            for database, table, query in targets:
                try:
                    partition_id = client.get_partition_id(database, table, query, partition_tuple)
                except ChRestoreError as exc:
                    log.error(
                        "partition_id_failed",
                        table=f"{database}.{table}",
                        partition=partition_tuple,
                        error=str(exc),
                    )
                    return set(), list(partitions)
                if partition_id:
                    resolved.add(partition_id)

    return resolved, sorted(resolved)


def is_part_in_partitions(part: Part, partition_ids: set[str]) -> bool:
    return part.partition_id in partition_ids
