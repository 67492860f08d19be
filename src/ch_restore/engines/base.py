"""Abstract base class for the database driver used by the restore engine."""

from __future__ import annotations

import abc
from typing import Any

from ch_restore.core.exceptions import UnknownDataPathError
from ch_restore.core.models import ClickHouseConfig, Disk, LiveTable, TableDescriptor


class BaseClient(abc.ABC):
    """Interface every ClickHouse driver must implement."""

    def __init__(self, config: ClickHouseConfig) -> None:
        self.config = config

    # ────────────── Connection ──────────────

    @abc.abstractmethod
    def connect(self) -> None:
        """Open the connection and validate credentials.

        Raises:
            ch_restore.core.exceptions.ConnectionError on failure.
        """

    @abc.abstractmethod
    def close(self) -> None:
        """Release the connection. Safe to call more than once."""

    def __enter__(self) -> BaseClient:
        self.connect()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ────────────── Queries ─────────────────

    @abc.abstractmethod
    def query(self, sql: str, settings: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a SELECT-like statement and return its rows as dicts."""

    @abc.abstractmethod
    def execute(self, sql: str, settings: dict[str, Any] | None = None) -> None:
        """Run a statement that returns no rows (DDL, ALTER, INSERT)."""

    # ────────────── Introspection ───────────

    @abc.abstractmethod
    def get_disks(self) -> list[Disk]:
        """Return the server's disks plus any configured disk_mapping entries."""

    @abc.abstractmethod
    def get_version(self) -> int:
        """Return the server version as ClickHouse's VERSION_INTEGER (e.g. 23003001)."""

    @abc.abstractmethod
    def get_tables(self, table_pattern: str = "") -> list[LiveTable]:
        """Return live tables whose ``db.table`` matches a comma-separated glob list."""

    @abc.abstractmethod
    def get_access_management_path(self, disks: list[Disk]) -> str:
        """Return the directory where local RBAC objects are stored."""

    @abc.abstractmethod
    def apply_macros(self, value: str) -> str:
        """Substitute ``{macro}`` placeholders using ``system.macros``."""

    @abc.abstractmethod
    def get_partition_id(
            self,
            database: str,
            table: str,
            create_query: str,
            partition_tuple: str,
    ) -> str:
        """Return the engine partition id for a partition-key value tuple.

        Returns an empty string when the table is not partitioned.
        """

    # ────────────── DDL ─────────────────────

    @abc.abstractmethod
    def create_database(self, database: str, on_cluster: str = "") -> None:
        """Create an empty database if it does not exist."""

    @abc.abstractmethod
    def create_database_from_query(self, query: str, on_cluster: str = "") -> None:
        """Run a captured CREATE DATABASE statement."""

    @abc.abstractmethod
    def drop_database(self, database: str, on_cluster: str = "") -> None:
        """Drop a database if it exists."""

    @abc.abstractmethod
    def create_table(
            self,
            database: str,
            table: str,
            query: str,
            on_cluster: str = "",
    ) -> None:
        """Create (or attach) a table, view or dictionary from its DDL."""

    @abc.abstractmethod
    def drop_table(
            self,
            database: str,
            table: str,
            query: str,
            on_cluster: str = "",
            ignore_dependencies: bool = False,
            version: int = 0,
    ) -> None:
        """Drop a table, view or dictionary if it exists.

        The object kind is inferred from *query*.
        """

    @abc.abstractmethod
    def create_user_defined_function(self, name: str, query: str, on_cluster: str = "") -> None:
        """Create a SQL user-defined function."""

    # ────────────── Data ────────────────────

    @abc.abstractmethod
    def attach_partitions(self, table: TableDescriptor, disks: list[Disk]) -> None:
        """Attach every part of *table* already staged in its ``detached`` directories."""

    # ────────────── Helpers ─────────────────

    def get_default_path(self, disks: list[Disk]) -> str:
        """Return the data path of the ``default`` disk (or the first disk)."""
        for disk in disks:
            if disk.name == "default":
                return disk.path
        if disks:
            return disks[0].path
        raise UnknownDataPathError("can't determine ClickHouse data path, no disks found")

    def get_embedded_backup_path(self, disks: list[Disk]) -> str:
        """Return the path of the disk configured for native BACKUP/RESTORE."""
        disk_name = self.config.embedded_backup_disk
        if not disk_name:
            raise UnknownDataPathError("embedded_backup_disk is not configured")
        for disk in disks:
            if disk.name == disk_name:
                return disk.path
        raise UnknownDataPathError(f"embedded_backup_disk '{disk_name}' not found in system.disks")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} url={self.config.url}>"
