"""Restore engine: schema replay, data placement and native RESTORE delegation."""

from ch_restore.restore.mapping import DatabaseMapping
from ch_restore.restore.orchestrator import Restorer

__all__ = ["DatabaseMapping", "Restorer"]
