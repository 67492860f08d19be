"""Custom exceptions for ch-restore."""

from __future__ import annotations

from typing import Any


class ChRestoreError(Exception):
    """Base exception for all ch-restore errors."""


class ConfigError(ChRestoreError):
    """Raised when configuration or a command-line argument is invalid."""


class ConnectionError(ChRestoreError):
    """Raised when the ClickHouse connection fails."""


class QueryError(ChRestoreError):
    """Raised when ClickHouse rejects a query."""

    def __init__(self, message: str, query: str = "") -> None:
        super().__init__(message)
        self.query = query


class RestoreError(ChRestoreError):
    """Raised when a restore operation fails."""


class UnknownDataPathError(RestoreError):
    """Raised when the default or embedded data path cannot be resolved."""


class BackupNotSelectedError(RestoreError):
    """Raised when no backup name was given."""

    def __init__(self, available: list[str]) -> None:
        super().__init__("select backup for restore")
        self.available = available


class MetadataNotFoundError(RestoreError):
    """Raised when the backup metadata directory does not exist."""


class MetadataNotADirectoryError(RestoreError):
    """Raised when the backup metadata path is a file."""


class NoMatchingTablesError(RestoreError):
    """Raised when the table pattern matches nothing in the backup."""


class DependencyResolutionError(RestoreError):
    """Raised when drop/create retries are exhausted."""

    def __init__(self, message: str, retries: int, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.retries = retries
        self.last_error = last_error


class DestinationTableMissingError(RestoreError):
    """Raised when tables for data restore are absent from the live server."""

    def __init__(self, tables: list[str]) -> None:
        names = ", ".join(f"'{t}'" for t in tables)
        super().__init__(
            f"{names} is not created. Restore schema first or create missing tables manually"
        )
        self.tables = tables


class PartPlacementError(RestoreError):
    """Raised when linking backup parts into a detached directory fails."""


class EmbeddedRestoreError(RestoreError):
    """Raised when the native RESTORE statement does not report success."""

    def __init__(self, message: str, results: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.results = results or []
