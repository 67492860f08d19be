"""Drop and recreate captured schema objects with dependency-tolerant retries.

Objects are replayed in selector order. An object that fails (typically
because something it depends on does not exist yet, or because something
still depends on it) is pushed to the next pass. At most one pass per
object is made, so a real dependency cycle ends in
:class:`DependencyResolutionError` instead of looping forever.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from ch_restore.core.exceptions import DependencyResolutionError, QueryError, RestoreError
from ch_restore.core.models import TableDescriptor
from ch_restore.engines.base import BaseClient
from ch_restore.logging import get_logger
from ch_restore.restore import ddl

log = get_logger(__name__)


def run_with_retries(
        tables: Sequence[TableDescriptor],
        action: Callable[[TableDescriptor], None],
        verb: str,
) -> int:
    """Apply *action* to every table, re-queueing failures, and return the pass count.

    Raises:
        DependencyResolutionError: If tables still fail after ``len(tables)`` passes.
    """
    total_passes = len(tables)
    pending = list(tables)
    passes = 0
    last_error: QueryError | None = None
    last_table: TableDescriptor | None = None

    while pending and passes < total_passes:
        passes += 1
        failed: list[TableDescriptor] = []
        for table in pending:
            try:
                action(table)
            except QueryError as exc:
                last_error, last_table = exc, table
                log.warning(
                    f"{verb}_table_failed",
                    table=table.full_name,
                    error=str(exc),
                    attempt=passes,
                    will_retry=passes < total_passes,
                )
                failed.append(table)
        pending = failed

    if pending and last_table is not None:
        raise DependencyResolutionError(
            f"can't {verb} table `{last_table.database}`.`{last_table.table}`: {last_error} "
            f"after {passes} times, please check your schema dependencies",
            retries=passes,
            last_error=last_error,
        )
    return passes


def drop_exists_tables(
        client: BaseClient,
        tables: Sequence[TableDescriptor],
        on_cluster: str = "",
        ignore_dependencies: bool = False,
        version: int = 0,
) -> None:
    """Drop existing objects that are about to be recreated.

    When a table has no captured DDL, the DROP kind is guessed (table,
    dictionary, materialized view) and the first guess the server accepts is
    stored back on the table as its query.
    """

    def _drop(table: TableDescriptor) -> None:
        if table.query:
            client.drop_table(
                table.database, table.table, table.query, on_cluster, ignore_dependencies, version
            )
            return
        last_error: QueryError | None = None
        for guess in ddl.guess_create_queries(table.database, table.table):
            try:
                client.drop_table(
                    table.database, table.table, guess, on_cluster, ignore_dependencies, version
                )
            except QueryError as exc:
                last_error = exc
                continue
            table.query = guess
            return
        if last_error is not None:
            raise last_error

    run_with_retries(tables, _drop, "drop")


def prepare_create_query(table: TableDescriptor, on_cluster: str = "") -> str:
    """Apply view re-attachment and replicated UUID substitution to captured DDL."""
    query = ddl.attach_views(table.query)
    if not on_cluster and ddl.needs_replicated_uuid(query):
        query, substituted = ddl.substitute_replicated_uuid(query)
        if not substituted:
            log.warning(
                "replicated_table_without_uuid",
                table=table.full_name,
                detail="table query doesn't contain UUID, can't guarantee a proper restore "
                       "for ReplicatedMergeTree",
            )
    return query


def restore_schema_regular(
        client: BaseClient,
        tables: Sequence[TableDescriptor],
        on_cluster: str = "",
) -> None:
    """Create every database and then every table, view and dictionary."""
    created_databases: set[str] = set()
    for table in tables:
        if table.database in created_databases:
            continue
        try:
            client.create_database(table.database, on_cluster)
        except QueryError as exc:
            raise RestoreError(f"can't create database '{table.database}': {exc}") from exc
        created_databases.add(table.database)

    queries = {id(t): prepare_create_query(t, on_cluster) for t in tables}

    def _create(table: TableDescriptor) -> None:
        client.create_table(table.database, table.table, queries[id(table)], on_cluster)

    passes = run_with_retries(tables, _create, "create")
    log.info("schema_restored", tables=len(tables), passes=passes)
