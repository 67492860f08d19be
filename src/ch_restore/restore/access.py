"""Restore RBAC objects and server configs, then restart clickhouse-server."""

from __future__ import annotations

import shlex
import shutil
import subprocess
from pathlib import Path

from ch_restore.core.exceptions import RestoreError
from ch_restore.logging import get_logger
from ch_restore.restore.filesystem import Ownership

log = get_logger(__name__)

RESTART_TIMEOUT = 180
REBUILD_MARK_FILE = "need_rebuild_lists.mark"


def restore_backup_related_dir(
        default_path: str,
        backup_name: str,
        backup_prefix_dir: str,
        destination_dir: Path,
        ownership: Ownership,
) -> bool:
    """Merge ``backup/<name>/<prefix>`` into *destination_dir*.

    Returns False when the backup has no such directory.
    """
    source = Path(default_path) / "backup" / backup_name / backup_prefix_dir
    if not source.exists():
        return False
    if not source.is_dir():
        raise RestoreError(f"{source} is not a dir")
    log.debug("copy_dir", source=str(source), destination=str(destination_dir))
    try:
        shutil.copytree(source, destination_dir, dirs_exist_ok=True)
        ownership.chown(destination_dir, recursive=True)
    except OSError as exc:
        raise RestoreError(f"can't copy {source} to {destination_dir}: {exc}") from exc
    return True


def restore_rbac(
        default_path: str,
        access_path: Path,
        backup_name: str,
        ownership: Ownership,
) -> None:
    """Copy ``access/`` and make the server rebuild its RBAC lists on start."""
    if not restore_backup_related_dir(default_path, backup_name, "access", access_path, ownership):
        return
    mark_file = access_path / REBUILD_MARK_FILE
    log.info("create_rbac_rebuild_mark", path=str(mark_file))
    try:
        mark_file.touch()
        ownership.chown(mark_file)
        for list_file in access_path.glob("*.list"):
            log.info("remove_rbac_list", path=str(list_file))
            list_file.unlink()
    except OSError as exc:
        raise RestoreError(f"can't prepare {access_path} for RBAC rebuild: {exc}") from exc


def restore_configs(
        default_path: str,
        config_dir: Path,
        backup_name: str,
        ownership: Ownership,
) -> None:
    """Copy ``configs/`` over the server config directory."""
    restore_backup_related_dir(default_path, backup_name, "configs", config_dir, ownership)


def run_restart_command(command: str, timeout: int = RESTART_TIMEOUT) -> None:
    """Run the configured restart command, bounded by *timeout* seconds."""
    try:
        args = shlex.split(command)
    except ValueError as exc:
        raise RestoreError(f"can't parse restart command {command!r}: {exc}") from exc
    if not args:
        raise RestoreError("restart_command is empty")

    log.info("run_restart_command", command=command)
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise RestoreError(f"restart command not found: {args[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise RestoreError(f"restart command timed out after {timeout}s") from exc
    log.debug("restart_command_output", stdout=result.stdout, stderr=result.stderr)
    if result.returncode != 0:
        raise RestoreError(
            f"restart command failed (exit {result.returncode}): {result.stderr.strip()}"
        )
