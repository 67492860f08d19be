"""Database driver registry."""

from __future__ import annotations

from ch_restore.core.models import ClickHouseConfig
from ch_restore.engines.base import BaseClient


def get_client(config: ClickHouseConfig) -> BaseClient:
    """Instantiate the ClickHouse driver for the given connection config."""
    from ch_restore.engines.clickhouse import ClickHouseClient

    return ClickHouseClient(config)


__all__ = ["BaseClient", "get_client"]
