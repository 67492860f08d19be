"""Tests for the table selector and backup metadata loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import T1_QUERY, BackupTree

from ch_restore.core.exceptions import (
    MetadataNotADirectoryError,
    MetadataNotFoundError,
    RestoreError,
)
from ch_restore.core.models import LiveTable, Part, TableDescriptor
from ch_restore.restore.mapping import DatabaseMapping
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


class TestLoadBackupMetadata:
    def test_missing_manifest(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_backup_metadata(tmp_path / "metadata.json")

    def test_invalid_manifest(self, tmp_path: Path) -> None:
        manifest = tmp_path / "metadata.json"
        manifest.write_text("{not json")
        with pytest.raises(RestoreError, match="invalid backup manifest"):
            load_backup_metadata(manifest)

    def test_roundtrip(self, t1_backup: BackupTree) -> None:
        metadata = load_backup_metadata(t1_backup.root / "metadata.json")
        assert metadata.backup_name == "2023-01-01"
        assert [d.name for d in metadata.databases] == ["db1"]
        assert not metadata.legacy
        assert not metadata.embedded


class TestTableListByPattern:
    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(MetadataNotFoundError):
            get_table_list_by_pattern_local(tmp_path / "metadata")

    def test_not_a_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "metadata"
        path.write_text("")
        with pytest.raises(MetadataNotADirectoryError):
            get_table_list_by_pattern_local(path)

    def test_pattern_filter(self, backup_tree: BackupTree) -> None:
        backup_tree.add_table("db1", "t1", T1_QUERY)
        backup_tree.add_table("db1", "t2", "CREATE TABLE db1.t2 (x UInt8) ENGINE = Log")
        backup_tree.add_table("db2", "t1", "CREATE TABLE db2.t1 (x UInt8) ENGINE = Log")

        tables = get_table_list_by_pattern_local(backup_tree.root / "metadata", "db1.*")
        assert [t.full_name for t in tables] == ["db1.t1", "db1.t2"]

        tables = get_table_list_by_pattern_local(backup_tree.root / "metadata", "*.t1")
        assert [t.full_name for t in tables] == ["db1.t1", "db2.t1"]

    def test_default_pattern_matches_all(self, backup_tree: BackupTree) -> None:
        backup_tree.add_table("db1", "t1", T1_QUERY)
        backup_tree.add_table("db2", "t1", "CREATE TABLE db2.t1 (x UInt8) ENGINE = Log")
        assert len(get_table_list_by_pattern_local(backup_tree.root / "metadata", "")) == 2

    def test_encoded_names(self, backup_tree: BackupTree) -> None:
        backup_tree.add_table("db-1", "my.table", "CREATE TABLE `db-1`.`my.table` (x UInt8) ENGINE = Log")
        tables = get_table_list_by_pattern_local(backup_tree.root / "metadata", "db-1.*")
        assert [t.full_name for t in tables] == ["db-1.my.table"]

    def test_skip_tables_and_exclude(self, backup_tree: BackupTree) -> None:
        backup_tree.add_table("db1", "t1", T1_QUERY)
        backup_tree.add_table("db1", "tmp_t", "CREATE TABLE db1.tmp_t (x UInt8) ENGINE = Log")
        backup_tree.add_table("system", "query_log", "CREATE TABLE system.query_log (x UInt8) ENGINE = Log")

        tables = get_table_list_by_pattern_local(
            backup_tree.root / "metadata",
            "*",
            skip_tables=["db1.tmp_*"],
            exclude=is_system_table,
        )
        assert [t.full_name for t in tables] == ["db1.t1"]

    def test_legacy_sql_files(self, backup_tree: BackupTree) -> None:
        db_dir = backup_tree.root / "metadata" / "db1"
        db_dir.mkdir(parents=True)
        (db_dir / "t1.sql").write_text(T1_QUERY)
        tables = get_table_list_by_pattern_local(backup_tree.root / "metadata")
        assert len(tables) == 1
        assert tables[0].full_name == "db1.t1"
        assert tables[0].query == T1_QUERY
        assert not any(tables[0].parts.values())

    def test_json_preferred_over_sql(self, backup_tree: BackupTree) -> None:
        backup_tree.add_table("db1", "t1", T1_QUERY, {"default": ["all_1_1_0"]})
        (backup_tree.root / "metadata" / "db1" / "t1.sql").write_text("CREATE TABLE db1.t1 stale")
        tables = get_table_list_by_pattern_local(backup_tree.root / "metadata")
        assert len(tables) == 1
        assert tables[0].parts["default"][0].name == "all_1_1_0"

    def test_broken_table_metadata(self, backup_tree: BackupTree) -> None:
        db_dir = backup_tree.root / "metadata" / "db1"
        db_dir.mkdir(parents=True)
        (db_dir / "t1.json").write_text("[]")
        with pytest.raises(RestoreError, match="can't read table metadata"):
            get_table_list_by_pattern_local(backup_tree.root / "metadata")


class TestLegacyBackups:
    def test_shadow_tree(self, backup_tree: BackupTree) -> None:
        shadow = backup_tree.root / "shadow"
        BackupTree.write_part(shadow / "db1" / "t1" / "202301_1_1_0")
        BackupTree.write_part(shadow / "db1" / "t1" / "202302_2_2_0")
        BackupTree.write_part(shadow / "db2" / "t9" / "all_1_1_0")

        tables = get_backup_tables_legacy(shadow, "db1.*")
        assert len(tables) == 1
        assert tables[0].full_name == "db1.t1"
        assert [p.name for p in tables[0].parts["default"]] == ["202301_1_1_0", "202302_2_2_0"]

    def test_missing_shadow(self, tmp_path: Path) -> None:
        with pytest.raises(MetadataNotFoundError):
            get_backup_tables_legacy(tmp_path / "shadow")

    def test_detect_freeze_shadow(self, tmp_path: Path) -> None:
        shadow = tmp_path / "shadow"
        assert not is_clickhouse_shadow(shadow)
        (shadow / "1" / "data").mkdir(parents=True)
        assert is_clickhouse_shadow(shadow)

    def test_detect_increment_file(self, tmp_path: Path) -> None:
        shadow = tmp_path / "shadow"
        shadow.mkdir()
        (shadow / "increment.txt").write_text("1")
        assert is_clickhouse_shadow(shadow)

    def test_regular_shadow_is_not_freeze(self, t1_backup: BackupTree) -> None:
        assert not is_clickhouse_shadow(t1_backup.root / "shadow")


class TestFilterParts:
    def test_keeps_matching_parts(self) -> None:
        table = TableDescriptor(
            database="db1",
            table="t1",
            parts={
                "default": [Part(name="202301_1_1_0"), Part(name="202302_2_2_0")],
                "cold": [Part(name="202212_3_3_0")],
            },
        )
        (filtered,) = filter_parts([table], {"202301", "202212"})
        assert [p.name for p in filtered.parts["default"]] == ["202301_1_1_0"]
        assert [p.name for p in filtered.parts["cold"]] == ["202212_3_3_0"]
        assert len(table.parts["default"]) == 2

    def test_empty_set_keeps_all(self) -> None:
        table = TableDescriptor(database="db1", table="t1", parts={"default": [Part(name="a_1_1_0")]})
        assert filter_parts([table], set()) == [table]


class TestAdjustDatabaseMapping:
    def test_mapped_table(self) -> None:
        table = TableDescriptor(database="db1", table="t1", query=T1_QUERY)
        (adjusted,) = adjust_database_mapping([table], DatabaseMapping({"db1": "db2"}))
        assert adjusted.database == "db2"
        assert adjusted.query.startswith("CREATE TABLE `db2`.t1 (`date` Date")
        assert "UUID" not in adjusted.query
        assert table.database == "db1"

    def test_mapped_materialized_view_loses_inner_uuid(self) -> None:
        query = (
            "CREATE MATERIALIZED VIEW db1.mv UUID 'aaaaaaaa-0000-0000-0000-000000000001' "
            "TO INNER UUID 'bbbbbbbb-0000-0000-0000-000000000002' (`id` UInt64) "
            "ENGINE = MergeTree ORDER BY id AS SELECT id FROM db1.src"
        )
        table = TableDescriptor(database="db1", table="mv", query=query)
        (adjusted,) = adjust_database_mapping([table], DatabaseMapping({"db1": "db2"}))
        assert "UUID" not in adjusted.query
        assert adjusted.query.startswith("CREATE MATERIALIZED VIEW `db2`.mv (`id` UInt64)")
        assert adjusted.query.endswith("FROM `db2`.src")

    def test_unmapped_table_keeps_uuid(self) -> None:
        query = "CREATE VIEW db3.v UUID 'abcd' AS SELECT * FROM db1.t1"
        table = TableDescriptor(database="db3", table="v", query=query)
        (adjusted,) = adjust_database_mapping([table], DatabaseMapping({"db1": "db2"}))
        assert adjusted.database == "db3"
        assert adjusted.query == "CREATE VIEW db3.v UUID 'abcd' AS SELECT * FROM `db2`.t1"


class TestShouldSkipDatabase:
    def test_system_databases(self) -> None:
        assert should_skip_database("system", "")
        assert should_skip_database("INFORMATION_SCHEMA", "*")

    def test_pattern(self) -> None:
        assert not should_skip_database("db1", "db1.*")
        assert should_skip_database("db2", "db1.*")
        assert not should_skip_database("db2", "db1.*,db2.t1")
        assert not should_skip_database("anything", "")

    def test_skip_tables(self) -> None:
        assert should_skip_database("tmp", "", skip_tables=["tmp.*"])
        assert not should_skip_database("tmp", "", skip_tables=["tmp.t1"])


class TestSkippedLiveTable:
    def test_system_databases(self) -> None:
        assert is_skipped_live_table(LiveTable(database="system", name="query_log"))
        assert is_skipped_live_table(LiveTable(database="information_schema", name="tables"))

    def test_skip_tables(self) -> None:
        table = LiveTable(database="db1", name="tmp_t1")
        assert is_skipped_live_table(table, skip_tables=["db1.tmp_*"])
        assert not is_skipped_live_table(table, skip_tables=["db2.*"])
        assert not is_skipped_live_table(table)
