"""Tests for the CLI interface."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import BACKUP_NAME, BackupTree, FakeClient
from typer.testing import CliRunner

import ch_restore.engines
from ch_restore.cli.app import app
from ch_restore.core.exceptions import ConnectionError
from ch_restore.core.models import ClickHouseConfig

runner = CliRunner()


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        "[clickhouse]\n"
        f'config_dir = "{tmp_path / "etc"}"\n'
        'restart_command = "true"\n'
    )
    return path


@pytest.fixture()
def patched_client(fake_client: FakeClient, monkeypatch: pytest.MonkeyPatch) -> FakeClient:
    monkeypatch.setattr(ch_restore.engines, "get_client", lambda config: fake_client)
    return fake_client


class TestMainApp:
    def test_help(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "restore" in result.output.lower()

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_no_args(self) -> None:
        result = runner.invoke(app)
        # Typer returns exit code 2 when showing help via no_args_is_help
        assert result.exit_code == 2


class TestRestoreSubcommand:
    def test_restore_help(self) -> None:
        result = runner.invoke(app, ["restore", "--help"])
        assert result.exit_code == 0
        for command in ("run", "schema", "data"):
            assert command in result.output

    def test_restore_run_help(self) -> None:
        result = runner.invoke(app, ["restore", "run", "--help"])
        assert result.exit_code == 0
        assert "--restore-database-mapping" in result.output
        assert "--partitions" in result.output

    def test_restore_with_mapping(
            self, config_file: Path, patched_client: FakeClient, t1_backup: BackupTree
    ) -> None:
        result = runner.invoke(app, [
            "--config", str(config_file),
            "restore", "run", BACKUP_NAME,
            "--tables", "db1.*",
            "--restore-database-mapping", "db1:db2",
        ])
        assert result.exit_code == 0, result.output
        assert "Restore completed" in result.output
        assert patched_client.live_names() == {"db2.t1"}
        assert patched_client.attached == [("db2.t1", ["202301_1_1_0"])]

    def test_restore_schema_command(
            self, config_file: Path, patched_client: FakeClient, t1_backup: BackupTree
    ) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "restore", "schema", BACKUP_NAME])
        assert result.exit_code == 0, result.output
        assert patched_client.live_names() == {"db1.t1"}
        assert patched_client.attached == []

    def test_missing_backup_name_lists_backups(
            self, config_file: Path, patched_client: FakeClient, t1_backup: BackupTree
    ) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "restore", "run"])
        assert result.exit_code == 1
        assert "select backup for restore" in result.output
        assert BACKUP_NAME in result.output

    def test_data_without_tables_fails(
            self, config_file: Path, patched_client: FakeClient, t1_backup: BackupTree
    ) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "restore", "data", BACKUP_NAME])
        assert result.exit_code == 1
        assert "Restore failed" in result.output
        assert "is not created" in result.output

    def test_malformed_mapping(
            self, config_file: Path, patched_client: FakeClient, t1_backup: BackupTree
    ) -> None:
        result = runner.invoke(app, [
            "--config", str(config_file), "restore", "run", BACKUP_NAME, "-m", "db1",
        ])
        assert result.exit_code == 1
        assert "srcDatabase:destinationDatabase" in result.output
        assert patched_client.connect_calls == 0


class TestBackupsSubcommand:
    def test_list(self, config_file: Path, patched_client: FakeClient, t1_backup: BackupTree) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "backups", "list"])
        assert result.exit_code == 0, result.output
        assert "Local Backups" in result.output
        assert BACKUP_NAME in result.output
        assert patched_client.close_calls == 1

    def test_list_empty(self, config_file: Path, patched_client: FakeClient) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "backups", "list"])
        assert result.exit_code == 0
        assert "No backups found" in result.output


class TestConfigSubcommand:
    def test_config_help(self) -> None:
        result = runner.invoke(app, ["config", "--help"])
        assert result.exit_code == 0
        assert "init" in result.output.lower()
        assert "show" in result.output.lower()

    def test_config_path(self) -> None:
        result = runner.invoke(app, ["config", "path"])
        assert result.exit_code == 0
        assert "Config dir" in result.output

    def test_config_show(self, config_file: Path) -> None:
        result = runner.invoke(app, ["config", "show", "--path", str(config_file)])
        assert result.exit_code == 0
        assert "restart_command" in result.output


class TestTestConnection:
    def test_connection_help(self) -> None:
        result = runner.invoke(app, ["test-connection", "--help"])
        assert result.exit_code == 0
        assert "--host" in result.output

    def test_successful_connection(self, config_file: Path, patched_client: FakeClient) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "test-connection"])
        assert result.exit_code == 0, result.output
        assert "Connection successful" in result.output
        assert "default" in result.output
        assert patched_client.close_calls == 1

    def test_overrides_reach_driver(
            self, config_file: Path, fake_client: FakeClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        seen: list[ClickHouseConfig] = []

        def _client(config: ClickHouseConfig) -> FakeClient:
            seen.append(config)
            return fake_client

        monkeypatch.setattr(ch_restore.engines, "get_client", _client)
        result = runner.invoke(app, [
            "--config", str(config_file), "test-connection", "-H", "ch2", "-P", "8443", "--secure",
        ])
        assert result.exit_code == 0, result.output
        assert seen[0].url == "https://ch2:8443"

    def test_failed_connection(
            self, config_file: Path, fake_client: FakeClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _refuse() -> None:
            raise ConnectionError("can't connect to clickhouse: Connection refused")

        monkeypatch.setattr(fake_client, "connect", _refuse)
        monkeypatch.setattr(ch_restore.engines, "get_client", lambda config: fake_client)
        result = runner.invoke(app, ["--config", str(config_file), "test-connection"])
        assert result.exit_code == 1
        assert "Connection failed" in result.output
