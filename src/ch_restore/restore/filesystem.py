"""Filesystem helpers for staging backup parts into ``detached`` directories."""

from __future__ import annotations

import os
import stat
import time
from collections.abc import Sequence
from pathlib import Path

from ch_restore.core.exceptions import PartPlacementError
from ch_restore.core.models import Disk, TableDescriptor
from ch_restore.core.utils import humanize_duration, table_path_encode
from ch_restore.logging import get_logger

log = get_logger(__name__)


class Ownership:
    """uid/gid of the ClickHouse data directory, applied to restored files.

    Resolved once per restore. Without root privileges ownership changes
    are impossible, so :meth:`chown` does nothing.
    """

    def __init__(self, uid: int | None = None, gid: int | None = None) -> None:
        self.uid = uid
        self.gid = gid

    @classmethod
    def resolve(cls, data_path: str) -> Ownership:
        if os.geteuid() != 0:
            return cls()
        info = os.stat(data_path)
        return cls(info.st_uid, info.st_gid)

    @property
    def enabled(self) -> bool:
        return self.uid is not None and self.gid is not None

    def chown(self, path: Path, recursive: bool = False) -> None:
        if not self.enabled:
            return
        os.chown(path, self.uid, self.gid)  # type: ignore[arg-type]
        if recursive and path.is_dir():
            for root, dirs, files in os.walk(path):
                for name in (*dirs, *files):
                    os.chown(Path(root) / name, self.uid, self.gid, follow_symlinks=False)  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f"<Ownership uid={self.uid} gid={self.gid}>"


def mkdir(path: Path, ownership: Ownership) -> None:
    """Create a single directory (parents must exist) and hand it to ClickHouse."""
    path.mkdir(mode=0o750, exist_ok=True)
    ownership.chown(path)


def mkdir_all(path: Path, ownership: Ownership) -> None:
    """Like ``mkdir -p``, chowning every directory it creates."""
    if path.is_dir():
        return
    if path.exists():
        raise NotADirectoryError(f"{path} exists and is not a directory")
    missing: list[Path] = []
    current = path
    while not current.exists():
        missing.append(current)
        current = current.parent
    for directory in reversed(missing):
        mkdir(directory, ownership)


def disks_by_paths(disks: Sequence[Disk], data_paths: Sequence[str]) -> dict[str, str]:
    """Map disk name to the table's data path on that disk.

    A data path belongs to the disk with the longest matching path prefix;
    disks sharing that path (substituted disks) get it too.
    """
    result: dict[str, str] = {}
    for data_path in data_paths:
        owners = [d for d in disks if data_path.startswith(d.path.rstrip("/") + "/")]
        if not owners:
            continue
        longest = max(len(d.path.rstrip("/")) for d in owners)
        for disk in owners:
            if len(disk.path.rstrip("/")) == longest:
                result[disk.name] = data_path
    return result


def backup_part_path(disk: Disk, backup_name: str, table: TableDescriptor, part_name: str) -> Path:
    """Location of a captured part, falling back to the pre-multi-disk layout."""
    shadow_table = (
        Path(disk.path) / "backup" / backup_name / "shadow"
        / table_path_encode(table.database) / table_path_encode(table.table)
    )
    part_path = shadow_table / disk.name / part_name
    if not part_path.exists():
        legacy_path = shadow_table / part_name
        if legacy_path.exists():
            return legacy_path
    return part_path


def _link_part(part_path: Path, detached_path: Path, ownership: Ownership) -> None:
    for root, dirs, files in os.walk(part_path):
        root_path = Path(root)
        relative = root_path.relative_to(part_path)
        for name in list(dirs):
            if (root_path / name).is_symlink():
                dirs.remove(name)
                log.debug("not_a_regular_file_skipped", path=str(root_path / name))
                continue
            log.debug("mkdir", path=str(detached_path / relative / name))
            mkdir(detached_path / relative / name, ownership)
        for name in files:
            source = root_path / name
            destination = detached_path / relative / name
            if not stat.S_ISREG(os.lstat(source).st_mode):
                log.debug("not_a_regular_file_skipped", path=str(source))
                continue
            try:
                os.link(source, destination)
            except FileExistsError:
                pass
            ownership.chown(destination)


def copy_data_to_detached(
        backup_name: str,
        table: TableDescriptor,
        disks: Sequence[Disk],
        table_data_paths: Sequence[str],
        ownership: Ownership,
) -> None:
    """Hard-link every captured part of *table* into the live table's ``detached`` dirs.

    *table* carries the captured (source) database name, which locates the
    parts inside the backup; *table_data_paths* belong to the destination table.
    Re-running is harmless: existing links are kept.

    Raises:
        PartPlacementError: On any filesystem failure.
    """
    start = time.monotonic()
    destination_paths = disks_by_paths(disks, table_data_paths)
    for disk in disks:
        parts = table.parts.get(disk.name, [])
        if not parts:
            log.debug("disk_has_no_parts", disk=disk.name)
            continue
        if disk.name not in destination_paths:
            raise PartPlacementError(
                f"can't find data path of '{table.full_name}' on disk '{disk.name}'"
            )
        detached_parent = Path(destination_paths[disk.name]) / "detached"
        for part in parts:
            detached_path = detached_parent / part.name
            part_path = backup_part_path(disk, backup_name, table, part.name)
            if not part_path.is_dir():
                raise PartPlacementError(f"part '{part.name}' not found in backup at {part_path}")
            try:
                mkdir_all(detached_path, ownership)
                _link_part(part_path, detached_path, ownership)
            except OSError as exc:
                raise PartPlacementError(
                    f"can't link part '{part.name}' '{part_path}' -> '{detached_path}': {exc}"
                ) from exc
    log.debug(
        "copied_to_detached",
        table=table.full_name,
        duration=humanize_duration(time.monotonic() - start),
    )
