"""Restore orchestration: locate a backup, then replay its schema and data."""

from __future__ import annotations

import time
from pathlib import Path

from ch_restore.core.exceptions import (
    BackupNotSelectedError,
    NoMatchingTablesError,
    RestoreError,
)
from ch_restore.core.models import (
    AppConfig,
    BackupMetadata,
    DatabaseMeta,
    Disk,
    RestoreRequest,
    is_information_schema,
)
from ch_restore.core.utils import humanize_duration
from ch_restore.engines.base import BaseClient
from ch_restore.logging import bind_restore_context, get_logger, restore_phase
from ch_restore.restore import ddl
from ch_restore.restore.access import restore_configs, restore_rbac, run_restart_command
from ch_restore.restore.data import restore_data_regular
from ch_restore.restore.embedded import restore_embedded
from ch_restore.restore.filesystem import Ownership
from ch_restore.restore.mapping import DatabaseMapping
from ch_restore.restore.partitions import resolve_partitions
from ch_restore.restore.schema import drop_exists_tables, restore_schema_regular
from ch_restore.restore.tables import (
    adjust_database_mapping,
    filter_parts,
    get_backup_tables_legacy,
    get_table_list_by_pattern_local,
    is_clickhouse_shadow,
    is_skipped_live_table,
    is_system_table,
    load_backup_metadata,
    should_skip_database,
)

log = get_logger(__name__)

METADATA_FILE = "metadata.json"


class Restorer:
    """Restore tables of a local backup into a running ClickHouse server.

    Usage::

        restorer = Restorer(get_client(config.clickhouse), config)
        restorer.restore(RestoreRequest(backup_name="2023-01-01", table_pattern="db1.*"))

    :meth:`restore` owns the connection. :meth:`restore_schema` and
    :meth:`restore_data` expect an already connected client.
    """

    def __init__(self, client: BaseClient, config: AppConfig) -> None:
        self.client = client
        self.config = config
        self._on_cluster: str | None = None
        self._ownership: Ownership | None = None

    # ────────────── Public operations ──────────────

    def restore(self, request: RestoreRequest) -> None:
        """Restore schema and/or data, or RBAC/configs, of ``request.backup_name``.

        Raises:
            ConfigError: If a database mapping rule is malformed.
            ConnectionError: If ClickHouse is unreachable.
            BackupNotSelectedError: If no backup name was given.
            RestoreError: On any other failure; subclasses name the component.
        """
        start = time.monotonic()
        mapping = self._mapping(request)
        bind_restore_context(request.backup_name)

        self.client.connect()
        try:
            disks = self.client.get_disks()
            if not request.backup_name:
                available = [b.backup_name for b in self.list_local_backups(disks)]
                for name in available:
                    log.info("local_backup", name=name)
                raise BackupNotSelectedError(available)

            default_path = self.client.get_default_path(disks)
            self._get_ownership(default_path)
            embedded_path = self._embedded_path(disks)

            metadata = self._read_backup_metadata(default_path, embedded_path, request.backup_name)
            is_embedded = metadata.embedded if metadata else False
            on_cluster = self._cluster()

            if metadata is not None:
                if request.restore_schema:
                    for database in metadata.databases:
                        if is_information_schema(database.name):
                            continue
                        self.restore_empty_database(database, request, mapping, on_cluster)
                    for function in metadata.functions:
                        self.client.create_user_defined_function(
                            function.name, function.create_query, on_cluster
                        )
                if not metadata.tables:
                    log.warning("backup_has_no_tables")
                    if not request.rbac_only and not request.configs_only:
                        return

            with restore_phase("access"):
                if self._restore_access(request, default_path, disks, is_embedded):
                    return

            if request.restore_schema:
                with restore_phase("schema"):
                    self.restore_schema(request, disks, is_embedded)
            if request.restore_data:
                with restore_phase("data"):
                    self.restore_data(request, disks, is_embedded)
            log.info("restore_complete", duration=humanize_duration(time.monotonic() - start))
        finally:
            self.client.close()

    def restore_schema(
            self,
            request: RestoreRequest,
            disks: list[Disk] | None = None,
            is_embedded: bool = False,
    ) -> None:
        """Drop (when requested) and recreate the captured schema objects."""
        disks = disks if disks is not None else self.client.get_disks()
        mapping = self._mapping(request)
        on_cluster = self._cluster()
        version = self.client.get_version()
        metadata_path = self._metadata_path(request.backup_name, disks, is_embedded)
        table_pattern = request.table_pattern or "*"

        tables = get_table_list_by_pattern_local(
            metadata_path,
            table_pattern,
            skip_tables=self.config.general.skip_tables,
            exclude=is_system_table,
        )
        if not tables:
            raise NoMatchingTablesError(
                f"no have found schemas by {table_pattern} in {request.backup_name}"
            )
        destination_tables = adjust_database_mapping(tables, mapping)

        if request.drop_table:
            drop_exists_tables(
                self.client,
                destination_tables,
                on_cluster,
                request.ignore_dependencies,
                version,
            )

        if is_embedded:
            restore_embedded(
                self.client,
                request.backup_name,
                self.config.clickhouse.embedded_backup_disk,
                tables,
                mapping,
                schema_only=True,
            )
        else:
            restore_schema_regular(self.client, destination_tables, on_cluster)

    def restore_data(
            self,
            request: RestoreRequest,
            disks: list[Disk] | None = None,
            is_embedded: bool = False,
    ) -> None:
        """Place the captured parts into the live tables and attach them."""
        start = time.monotonic()
        disks = disks if disks is not None else self.client.get_disks()
        mapping = self._mapping(request)
        default_path = self.client.get_default_path(disks)
        backup_dir = Path(default_path) / "backup" / request.backup_name

        if is_clickhouse_shadow(backup_dir / "shadow"):
            raise RestoreError("backups created in v0.0.1 is not supported now")

        backup = self._find_local_backup(request.backup_name, disks)
        table_pattern = request.table_pattern or "*"
        if backup.legacy:
            tables = get_backup_tables_legacy(backup_dir / "shadow", table_pattern)
        else:
            tables = get_table_list_by_pattern_local(
                self._metadata_path(request.backup_name, disks, is_embedded),
                table_pattern,
                skip_tables=self.config.general.skip_tables,
            )
        if not tables:
            raise NoMatchingTablesError(
                f"no have found schemas by {table_pattern} in {request.backup_name}"
            )

        partition_ids, partitions = set(), list(request.partitions)
        if request.partitions:
            live_tables = [
                t for t in self.client.get_tables(mapping.rewrite_table_pattern(request.table_pattern))
                if not is_skipped_live_table(t, self.config.general.skip_tables)
            ]
            partition_ids, partitions = resolve_partitions(
                self.client, request.partitions, live_tables, tables, mapping
            )
            tables = filter_parts(tables, partition_ids)
        log.debug("found_tables_with_data", count=len(tables))

        if is_embedded:
            restore_embedded(
                self.client,
                request.backup_name,
                self.config.clickhouse.embedded_backup_disk,
                tables,
                mapping,
                partitions=partitions,
            )
        else:
            restore_data_regular(
                self.client,
                request.backup_name,
                request.table_pattern,
                tables,
                disks,
                default_path,
                mapping,
                self._get_ownership(default_path),
            )
        log.info("data_restored", duration=humanize_duration(time.monotonic() - start))

    def restore_empty_database(
            self,
            database: DatabaseMeta,
            request: RestoreRequest,
            mapping: DatabaseMapping,
            on_cluster: str = "",
    ) -> None:
        """Create a captured database (under its destination name) even if it holds no tables."""
        target = mapping.destination(database.name)
        table_pattern = mapping.rewrite_table_pattern(request.table_pattern)
        if should_skip_database(target, table_pattern, self.config.general.skip_tables):
            log.debug("database_skipped", database=target)
            return
        if request.schema_only and request.drop_table:
            self.client.drop_database(target, on_cluster)
        self.client.create_database_from_query(
            ddl.rewrite_create_database(database.query, target), on_cluster
        )

    def list_local_backups(self, disks: list[Disk]) -> list[BackupMetadata]:
        """Backups found under ``<default path>/backup`` and on the embedded backup disk."""
        backups: list[BackupMetadata] = []
        backup_root = Path(self.client.get_default_path(disks)) / "backup"
        if backup_root.is_dir():
            for backup_dir in sorted(p for p in backup_root.iterdir() if p.is_dir()):
                manifest = backup_dir / METADATA_FILE
                if not manifest.exists():
                    backups.append(BackupMetadata(backup_name=backup_dir.name, legacy=True))
                    continue
                try:
                    metadata = load_backup_metadata(manifest)
                except RestoreError as exc:
                    log.warning("broken_backup", backup_name=backup_dir.name, error=str(exc))
                    continue
                metadata.backup_name = metadata.backup_name or backup_dir.name
                backups.append(metadata)

        embedded_path = self._embedded_path(disks)
        if embedded_path and Path(embedded_path).is_dir():
            for backup_dir in sorted(p for p in Path(embedded_path).iterdir() if p.is_dir()):
                manifest = backup_dir / METADATA_FILE
                if not manifest.is_file():
                    continue
                try:
                    metadata = load_backup_metadata(manifest)
                except RestoreError as exc:
                    log.warning("broken_backup", backup_name=backup_dir.name, error=str(exc))
                    continue
                metadata.backup_name = metadata.backup_name or backup_dir.name
                metadata.embedded = True
                backups.append(metadata)
        return backups

    # ────────────── Internals ──────────────

    def _mapping(self, request: RestoreRequest) -> DatabaseMapping:
        return DatabaseMapping.parse(
            request.database_mapping, self.config.general.restore_database_mapping
        )

    def _cluster(self) -> str:
        """Macro-expanded cluster name, resolved once per restorer."""
        if self._on_cluster is None:
            cluster = self.config.general.restore_schema_on_cluster
            self._on_cluster = self.client.apply_macros(cluster) if cluster else ""
        return self._on_cluster

    def _get_ownership(self, default_path: str) -> Ownership:
        if self._ownership is None:
            self._ownership = Ownership.resolve(default_path)
        return self._ownership

    def _embedded_path(self, disks: list[Disk]) -> str:
        settings = self.config.clickhouse
        if not settings.use_embedded_backup_restore:
            return ""
        if not settings.embedded_backup_disk:
            log.warning("embedded_backup_disk_not_configured")
            return ""
        return self.client.get_embedded_backup_path(disks)

    def _metadata_path(self, backup_name: str, disks: list[Disk], is_embedded: bool) -> Path:
        if is_embedded:
            return Path(self.client.get_embedded_backup_path(disks)) / backup_name / "metadata"
        return Path(self.client.get_default_path(disks)) / "backup" / backup_name / "metadata"

    def _read_backup_metadata(
            self,
            default_path: str,
            embedded_path: str,
            backup_name: str,
    ) -> BackupMetadata | None:
        """Read the manifest, embedded location first. None means a legacy backup."""
        candidates: list[tuple[Path, bool]] = []
        if embedded_path:
            candidates.append((Path(embedded_path) / backup_name / METADATA_FILE, True))
        candidates.append((Path(default_path) / "backup" / backup_name / METADATA_FILE, False))

        for path, embedded in candidates:
            try:
                metadata = load_backup_metadata(path)
            except FileNotFoundError:
                continue
            metadata.embedded = embedded
            log.debug("backup_metadata_loaded", path=str(path), embedded=embedded)
            return metadata
        log.info("backup_metadata_missing", legacy=True)
        return None

    def _find_local_backup(self, backup_name: str, disks: list[Disk]) -> BackupMetadata:
        for backup in self.list_local_backups(disks):
            if backup.backup_name == backup_name:
                return backup
        raise RestoreError(f"can't restore: '{backup_name}' is not found on local storage")

    def _restore_access(
            self,
            request: RestoreRequest,
            default_path: str,
            disks: list[Disk],
            is_embedded: bool,
    ) -> bool:
        """Restore RBAC objects and/or configs. Returns True when the server was restarted."""
        need_restart = False
        ownership = self._get_ownership(default_path)
        if request.rbac_only and not is_embedded:
            access_path = Path(self.client.get_access_management_path(disks))
            restore_rbac(default_path, access_path, request.backup_name, ownership)
            need_restart = True
        if request.configs_only and not is_embedded:
            restore_configs(
                default_path, self.config.clickhouse.config_dir, request.backup_name, ownership
            )
            need_restart = True

        if not need_restart:
            return False
        log.warning(
            "restart_required",
            reason="backup contains `access` or `configs` directory",
            command=self.config.clickhouse.restart_command,
        )
        run_restart_command(self.config.clickhouse.restart_command)
        return True
