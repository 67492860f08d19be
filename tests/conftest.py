"""Shared pytest fixtures."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pytest

from ch_restore.core.exceptions import QueryError
from ch_restore.core.models import (
    AppConfig,
    BackupMetadata,
    ClickHouseConfig,
    DatabaseMeta,
    Disk,
    FunctionMeta,
    LiveTable,
    Part,
    TableDescriptor,
    TableTitle,
)
from ch_restore.core.utils import match_table_pattern, table_path_encode
from ch_restore.engines.base import BaseClient

BACKUP_NAME = "2023-01-01"

T1_QUERY = (
    "CREATE TABLE db1.t1 UUID '11111111-1111-1111-1111-111111111111' "
    "(`date` Date, `id` UInt64) ENGINE = MergeTree "
    "PARTITION BY toYYYYMM(date) ORDER BY id SETTINGS index_granularity = 8192"
)


class FakeClient(BaseClient):
    """In-memory ClickHouse: keeps live tables and records every call.

    ``create_failures`` / ``drop_failures`` map ``db.table`` to the number of
    attempts that should raise :class:`QueryError`; ``dependencies`` map
    ``db.table`` to a table that must exist before it can be created.
    """

    def __init__(
            self,
            config: ClickHouseConfig,
            disks: list[Disk],
            version: int = 23_003_000,
    ) -> None:
        super().__init__(config)
        self.disks = disks
        self.version = version
        self.live: dict[tuple[str, str], LiveTable] = {}
        self.databases: set[str] = set()
        self.connected = False
        self.connect_calls = 0
        self.close_calls = 0

        self.executed: list[str] = []
        self.queries: list[str] = []
        self.database_queries: list[tuple[str, str]] = []
        self.dropped_databases: list[str] = []
        self.created: list[tuple[str, str, str, str]] = []
        self.dropped: list[tuple[str, str, str]] = []
        self.attached: list[tuple[str, list[str]]] = []
        self.functions: list[tuple[str, str, str]] = []

        self.create_failures: dict[str, int] = {}
        self.drop_failures: dict[str, int] = {}
        self.dependencies: dict[str, str] = {}
        self.drop_accepts: dict[str, str] = {}
        self.partition_ids: dict[str, str] = {}
        self.partition_error: str | None = None
        self.query_results: list[dict[str, Any]] = [{"id": "restore-1", "status": "RESTORED"}]
        self.query_error: str | None = None
        self.macros: dict[str, str] = {"cluster": "prod"}

    # connection

    def connect(self) -> None:
        self.connected = True
        self.connect_calls += 1

    def close(self) -> None:
        self.connected = False
        self.close_calls += 1

    # queries

    def query(self, sql: str, settings: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        self.queries.append(sql)
        if self.query_error:
            raise QueryError(self.query_error, query=sql)
        return self.query_results

    def execute(self, sql: str, settings: dict[str, Any] | None = None) -> None:
        self.executed.append(sql)

    # introspection

    def get_disks(self) -> list[Disk]:
        return list(self.disks)

    def get_version(self) -> int:
        return self.version

    def get_tables(self, table_pattern: str = "") -> list[LiveTable]:
        return [t for t in self.live.values() if match_table_pattern(t.full_name, table_pattern)]

    def get_access_management_path(self, disks: list[Disk]) -> str:
        return str(Path(self.get_default_path(disks)) / "access")

    def apply_macros(self, value: str) -> str:
        for macro, substitution in self.macros.items():
            value = value.replace("{" + macro + "}", substitution)
        return value

    def get_partition_id(
            self,
            database: str,
            table: str,
            create_query: str,
            partition_tuple: str,
    ) -> str:
        if self.partition_error:
            raise QueryError(self.partition_error)
        if "PARTITION BY" not in create_query:
            return ""
        return self.partition_ids.get(partition_tuple, "")

    # ddl

    def create_database(self, database: str, on_cluster: str = "") -> None:
        self.databases.add(database)

    def create_database_from_query(self, query: str, on_cluster: str = "") -> None:
        self.database_queries.append((query, on_cluster))

    def drop_database(self, database: str, on_cluster: str = "") -> None:
        self.dropped_databases.append(database)

    def create_table(self, database: str, table: str, query: str, on_cluster: str = "") -> None:
        full_name = f"{database}.{table}"
        if self.create_failures.get(full_name, 0) > 0:
            self.create_failures[full_name] -= 1
            raise QueryError(f"Code: 60. can't create {full_name}")
        required = self.dependencies.get(full_name)
        if required and tuple(required.split(".", 1)) not in self.live:
            raise QueryError(f"Code: 60. Table {required} doesn't exist")
        if database not in self.databases:
            raise QueryError(f"Code: 81. Database {database} doesn't exist")
        self.created.append((database, table, query, on_cluster))
        self.add_live_table(database, table, query)

    def drop_table(
            self,
            database: str,
            table: str,
            query: str,
            on_cluster: str = "",
            ignore_dependencies: bool = False,
            version: int = 0,
    ) -> None:
        full_name = f"{database}.{table}"
        if self.drop_failures.get(full_name, 0) > 0:
            self.drop_failures[full_name] -= 1
            raise QueryError(f"Code: 630. can't drop {full_name}, other tables depend on it")
        accepted = self.drop_accepts.get(full_name)
        if accepted and accepted not in query:
            raise QueryError(f"Code: 80. {full_name} is not a {query.split()[1]}")
        self.dropped.append((database, table, query))
        self.live.pop((database, table), None)

    def create_user_defined_function(self, name: str, query: str, on_cluster: str = "") -> None:
        self.functions.append((name, query, on_cluster))

    # data

    def attach_partitions(self, table: TableDescriptor, disks: list[Disk]) -> None:
        names = [p.name for d in disks for p in table.parts.get(d.name, [])]
        self.attached.append((table.full_name, names))

    # helpers

    def add_live_table(self, database: str, table: str, query: str = "") -> LiveTable:
        data_path = (
            Path(self.get_default_path(self.disks))
            / "data" / table_path_encode(database) / table_path_encode(table)
        )
        data_path.mkdir(parents=True, exist_ok=True)
        live = LiveTable(
            database=database,
            name=table,
            engine="MergeTree",
            data_paths=[f"{data_path}/"],
            create_table_query=query,
        )
        self.live[(database, table)] = live
        self.databases.add(database)
        return live

    def live_names(self) -> set[str]:
        return {t.full_name for t in self.live.values()}


class BackupTree:
    """Write a local backup in the on-disk layout the restore engine reads."""

    def __init__(self, disks: dict[str, Path], name: str = BACKUP_NAME) -> None:
        self.disks = disks
        self.name = name
        self.root = disks["default"] / "backup" / name
        self.tables: list[TableDescriptor] = []
        self.databases: dict[str, str] = {}

    def add_table(
            self,
            database: str,
            table: str,
            query: str = "",
            parts: dict[str, Iterable[str]] | None = None,
    ) -> TableDescriptor:
        parts = {disk: list(names) for disk, names in (parts or {}).items()}
        descriptor = TableDescriptor(
            database=database,
            table=table,
            query=query,
            parts={disk: [Part(name=n) for n in names] for disk, names in parts.items()},
        )
        metadata_file = (
            self.root / "metadata" / table_path_encode(database) / f"{table_path_encode(table)}.json"
        )
        metadata_file.parent.mkdir(parents=True, exist_ok=True)
        metadata_file.write_text(descriptor.model_dump_json())

        for disk, names in parts.items():
            disk_path = self.disks.get(disk, self.disks["default"])
            for part_name in names:
                part_dir = (
                    disk_path / "backup" / self.name / "shadow"
                    / table_path_encode(database) / table_path_encode(table) / disk / part_name
                )
                self.write_part(part_dir)

        self.tables.append(descriptor)
        self.databases.setdefault(database, f"CREATE DATABASE {database} ENGINE = Atomic")
        return descriptor

    @staticmethod
    def write_part(part_dir: Path) -> None:
        (part_dir / "projection.proj").mkdir(parents=True, exist_ok=True)
        (part_dir / "checksums.txt").write_text("checksums")
        (part_dir / "columns.txt").write_text("columns format version: 1\n2 columns:\n")
        (part_dir / "data.bin").write_bytes(b"\x00" * 128)
        (part_dir / "projection.proj" / "data.bin").write_bytes(b"\x01" * 16)

    def write_manifest(self, functions: Iterable[FunctionMeta] = ()) -> Path:
        metadata = BackupMetadata(
            backup_name=self.name,
            disks={name: str(path) for name, path in self.disks.items()},
            databases=[
                DatabaseMeta(name=name, engine="Atomic", query=query)
                for name, query in self.databases.items()
            ],
            tables=[TableTitle(database=t.database, table=t.table) for t in self.tables],
            functions=list(functions),
        )
        manifest = self.root / "metadata.json"
        manifest.parent.mkdir(parents=True, exist_ok=True)
        manifest.write_text(metadata.model_dump_json())
        return manifest


@pytest.fixture()
def data_path(tmp_path: Path) -> Path:
    """ClickHouse data directory of the ``default`` disk."""
    path = tmp_path / "clickhouse"
    path.mkdir()
    return path


@pytest.fixture()
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        clickhouse=ClickHouseConfig(
            config_dir=tmp_path / "etc" / "clickhouse-server",
            restart_command="true",
        ),
    )


@pytest.fixture()
def fake_client(app_config: AppConfig, data_path: Path) -> FakeClient:
    return FakeClient(app_config.clickhouse, [Disk(name="default", path=f"{data_path}/")])


@pytest.fixture()
def backup_tree(data_path: Path) -> BackupTree:
    return BackupTree({"default": data_path})


@pytest.fixture()
def t1_backup(backup_tree: BackupTree) -> BackupTree:
    """Backup ``2023-01-01`` holding ``db1.t1`` with one part on disk ``default``."""
    backup_tree.add_table("db1", "t1", T1_QUERY, {"default": ["202301_1_1_0"]})
    backup_tree.write_manifest()
    return backup_tree
