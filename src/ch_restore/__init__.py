"""ch-restore: restore engine for ClickHouse backups."""

__version__ = "0.1.0"
