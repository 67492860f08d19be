"""ClickHouse driver over the HTTP interface."""

from __future__ import annotations

import json
import re
from typing import Any

import httpx

from ch_restore.core.exceptions import ConnectionError, QueryError
from ch_restore.core.models import ClickHouseConfig, Disk, LiveTable, TableDescriptor
from ch_restore.core.utils import match_table_pattern, quote_identifier, quote_string
from ch_restore.engines.base import BaseClient
from ch_restore.logging import get_logger

log = get_logger(__name__)

_NAME = r"(?:`(?:[^`\\]|\\.)+`|[^\s.`(]+)"

_OBJECT_HEAD_RE = re.compile(
    r"^(?P<verb>CREATE|ATTACH)\s+(?P<kind>TABLE|DICTIONARY|VIEW|MATERIALIZED VIEW|LIVE VIEW|WINDOW VIEW)\s+"
    r"(?P<ine>IF NOT EXISTS\s+)?"
    rf"(?P<name>{_NAME}\.{_NAME}|{_NAME})"
    r"(?P<uuid>\s+UUID\s+'[^']+')?",
)
_FUNCTION_HEAD_RE = re.compile(r"^CREATE\s+FUNCTION\s+(?:IF NOT EXISTS\s+)?(\S+)")
_DATABASE_HEAD_RE = re.compile(r"^(CREATE DATABASE\s+(?:IF NOT EXISTS\s+)?\S+)")
_PARTITION_BY_RE = re.compile(
    r"\bPARTITION BY\s+(.+?)(?=\s+(?:ORDER BY|PRIMARY KEY|SAMPLE BY|TTL|SETTINGS|COMMENT)\b|\s*$)",
    re.S,
)
_ENGINE_RE = re.compile(r"ENGINE\s*=\s*\w+(?:\([^)]*\))?")

# VERSION_INTEGER thresholds
_SYNC_DROP_VERSION = 21_000_000
_NO_DELAY_DROP_VERSION = 19_004_000
_CHECK_DEPENDENCIES_VERSION = 22_004_000


def on_cluster_clause(cluster: str) -> str:
    return f" ON CLUSTER {quote_string(cluster)}" if cluster else ""


def add_if_not_exists(query: str) -> str:
    """Make a CREATE/ATTACH statement idempotent."""
    match = _OBJECT_HEAD_RE.match(query)
    if not match or match.group("ine"):
        return query
    start = match.start("name")
    return f"{query[:start]}IF NOT EXISTS {query[start:]}"


def add_on_cluster(query: str, cluster: str) -> str:
    """Insert ``ON CLUSTER`` after the object name (and UUID, if any)."""
    if not cluster or " ON CLUSTER " in query:
        return query
    match = _OBJECT_HEAD_RE.match(query)
    if not match:
        return query
    end = match.end()
    return f"{query[:end]}{on_cluster_clause(cluster)}{query[end:]}"


def experimental_settings(query: str) -> dict[str, Any]:
    """Settings a server needs before it accepts some captured DDL."""
    settings: dict[str, Any] = {}
    if " LIVE VIEW " in query:
        settings["allow_experimental_live_view"] = 1
    if " WINDOW VIEW " in query:
        settings["allow_experimental_window_view"] = 1
    if "Object(" in query:
        settings["allow_experimental_object_type"] = 1
    return settings


class ClickHouseClient(BaseClient):
    """Talk to ClickHouse through its HTTP interface (port 8123 by default)."""

    def __init__(
            self,
            config: ClickHouseConfig,
            transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(config)
        self._transport = transport
        self._client: httpx.Client | None = None

    # ────────────── Connection ──────────────

    def connect(self) -> None:
        if self._client is not None:
            return
        headers = {"X-ClickHouse-User": self.config.username}
        if self.config.password:
            headers["X-ClickHouse-Key"] = self.config.password.get_secret_value()
        self._client = httpx.Client(
            base_url=self.config.url,
            headers=headers,
            timeout=self.config.timeout,
            transport=self._transport,
        )
        try:
            self.query("SELECT 1 AS ok")
        except QueryError as exc:
            self.close()
            raise ConnectionError(f"can't connect to clickhouse: {exc}") from exc
        except ConnectionError:
            self.close()
            raise
        log.info("clickhouse_connection_ok", host=self.config.host, port=self.config.port)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # ────────────── Queries ─────────────────

    def _post(self, sql: str, params: dict[str, Any]) -> str:
        if self._client is None:
            raise ConnectionError("clickhouse client is not connected")
        log.debug("clickhouse_query", query=sql)
        try:
            response = self._client.post("/", params=params, content=sql.encode("utf-8"))
        except httpx.HTTPError as exc:
            raise ConnectionError(f"clickhouse request failed: {exc}") from exc
        if response.status_code != 200:
            raise QueryError(response.text.strip(), query=sql)
        return response.text

    def query(self, sql: str, settings: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        params = {"default_format": "JSONEachRow", **(settings or {})}
        body = self._post(sql, params)
        return [json.loads(line) for line in body.splitlines() if line.strip()]

    def execute(self, sql: str, settings: dict[str, Any] | None = None) -> None:
        self._post(sql, dict(settings or {}))

    # ────────────── Introspection ───────────

    def get_disks(self) -> list[Disk]:
        try:
            rows = self.query("SELECT name, path, type FROM system.disks ORDER BY name")
        except QueryError:
            # servers before 20.x have no `type` column
            rows = self.query("SELECT name, path, 'local' AS type FROM system.disks ORDER BY name")
        disks = [Disk(name=r["name"], path=r["path"], type=r["type"]) for r in rows]
        known = {d.name for d in disks}
        for name, path in self.config.disk_mapping.items():
            if name not in known:
                disks.append(Disk(name=name, path=path, type="local"))
        return disks

    def get_version(self) -> int:
        rows = self.query(
            "SELECT value FROM system.build_options WHERE name = 'VERSION_INTEGER'"
        )
        if not rows:
            raise QueryError("can't read VERSION_INTEGER from system.build_options")
        return int(rows[0]["value"])

    def get_tables(self, table_pattern: str = "") -> list[LiveTable]:
        rows = self.query(
            "SELECT database, name, engine, data_paths, create_table_query "
            "FROM system.tables WHERE is_temporary = 0 ORDER BY database, name"
        )
        tables = [LiveTable(**row) for row in rows]
        return [t for t in tables if match_table_pattern(t.full_name, table_pattern)]

    def get_access_management_path(self, disks: list[Disk]) -> str:
        try:
            rows = self.query(
                "SELECT JSONExtractString(params, 'path') AS access_path "
                "FROM system.user_directories WHERE type = 'local directory'"
            )
        except QueryError as exc:
            log.debug("user_directories_unavailable", error=str(exc))
            rows = []
        if rows and rows[0]["access_path"]:
            return rows[0]["access_path"]
        return self.get_default_path(disks).rstrip("/") + "/access"

    def apply_macros(self, value: str) -> str:
        if "{" not in value:
            return value
        for row in self.query("SELECT macro, substitution FROM system.macros"):
            value = value.replace("{" + row["macro"] + "}", row["substitution"])
        return value

    def get_partition_id(
            self,
            database: str,
            table: str,
            create_query: str,
            partition_tuple: str,
    ) -> str:
        partition_by = _PARTITION_BY_RE.search(create_query)
        if "MergeTree" not in create_query or not partition_by:
            return ""
        helper = quote_identifier(f"__partition_id_{table}")
        qualified = f"{quote_identifier(database)}.{helper}"

        head = _OBJECT_HEAD_RE.match(create_query)
        if not head:
            raise QueryError(f"can't parse CREATE statement of {database}.{table}", query=create_query)
        rest = re.sub(r"^\s+ON CLUSTER\s+\S+", "", create_query[head.end():])
        create_sql = f"CREATE TABLE {qualified}{rest}"
        create_sql = _ENGINE_RE.sub("ENGINE = MergeTree", create_sql, count=1)

        self.execute(f"DROP TABLE IF EXISTS {qualified} SYNC")
        self.execute(create_sql)
        try:
            rows = self.query(
                "SELECT name FROM system.columns "
                f"WHERE database = {quote_string(database)} "
                f"AND table = {quote_string(f'__partition_id_{table}')} ORDER BY position"
            )
            expression = partition_by.group(1)
            columns = [
                r["name"] for r in rows
                if re.search(rf"(?<![\w`]){re.escape(r['name'])}(?![\w`])", expression)
                or f"`{r['name']}`" in expression
            ]
            column_list = ", ".join(quote_identifier(c) for c in columns)
            self.execute(f"INSERT INTO {qualified} ({column_list}) VALUES ({partition_tuple})")
            parts = self.query(
                "SELECT DISTINCT partition_id FROM system.parts "
                f"WHERE active AND database = {quote_string(database)} "
                f"AND table = {quote_string(f'__partition_id_{table}')}"
            )
        finally:
            self.execute(f"DROP TABLE IF EXISTS {qualified} SYNC")
        return parts[0]["partition_id"] if parts else ""

    # ────────────── DDL ─────────────────────

    def create_database(self, database: str, on_cluster: str = "") -> None:
        self.execute(
            f"CREATE DATABASE IF NOT EXISTS {quote_identifier(database)}{on_cluster_clause(on_cluster)}"
        )

    def create_database_from_query(self, query: str, on_cluster: str = "") -> None:
        if on_cluster and " ON CLUSTER " not in query:
            query = _DATABASE_HEAD_RE.sub(
                lambda m: m.group(1) + on_cluster_clause(on_cluster), query, count=1
            )
        self.execute(query)

    def drop_database(self, database: str, on_cluster: str = "") -> None:
        self.execute(
            f"DROP DATABASE IF EXISTS {quote_identifier(database)}{on_cluster_clause(on_cluster)} SYNC"
        )

    def create_table(
            self,
            database: str,
            table: str,
            query: str,
            on_cluster: str = "",
    ) -> None:
        sql = add_on_cluster(add_if_not_exists(query), on_cluster)
        self.execute(sql, experimental_settings(query))
        log.debug("table_created", table=f"{database}.{table}")

    def drop_table(
            self,
            database: str,
            table: str,
            query: str,
            on_cluster: str = "",
            ignore_dependencies: bool = False,
            version: int = 0,
    ) -> None:
        kind = "DICTIONARY" if " DICTIONARY " in query else "TABLE"
        sql = (
            f"DROP {kind} IF EXISTS {quote_identifier(database)}.{quote_identifier(table)}"
            f"{on_cluster_clause(on_cluster)}"
        )
        if version >= _SYNC_DROP_VERSION:
            sql += " SYNC"
        elif version > _NO_DELAY_DROP_VERSION:
            sql += " NO DELAY"
        settings: dict[str, Any] = {}
        if ignore_dependencies and version >= _CHECK_DEPENDENCIES_VERSION:
            settings["check_table_dependencies"] = 0
        self.execute(sql, settings)

    def create_user_defined_function(self, name: str, query: str, on_cluster: str = "") -> None:
        sql = _FUNCTION_HEAD_RE.sub(
            lambda m: f"CREATE FUNCTION IF NOT EXISTS {m.group(1)}{on_cluster_clause(on_cluster)}",
            query,
            count=1,
        )
        self.execute(sql)

    # ────────────── Data ────────────────────

    def attach_partitions(self, table: TableDescriptor, disks: list[Disk]) -> None:
        qualified = f"{quote_identifier(table.database)}.{quote_identifier(table.table)}"
        for disk in disks:
            for part in table.parts.get(disk.name, []):
                self.execute(f"ALTER TABLE {qualified} ATTACH PART {quote_string(part.name)}")
                log.debug("part_attached", table=table.full_name, part=part.name, disk=disk.name)
