"""Pydantic models for ch-restore configuration and backup metadata."""

from __future__ import annotations

import enum
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

SYSTEM_DATABASES = frozenset({
    "system",
    "INFORMATION_SCHEMA",
    "information_schema",
    "_temporary_and_external_tables",
})


def is_information_schema(database: str) -> bool:
    """Return True for the read-only information-schema databases."""
    return database in ("INFORMATION_SCHEMA", "information_schema")


# ──────────────────────── Enums ──────────────────────────


class LogFormat(enum.StrEnum):
    """Structured log output format."""

    CONSOLE = "console"
    JSON = "json"


class ObjectKind(enum.StrEnum):
    """Kind of schema object as spelled in DDL."""

    TABLE = "TABLE"
    DICTIONARY = "DICTIONARY"
    VIEW = "VIEW"
    MATERIALIZED_VIEW = "MATERIALIZED VIEW"


# ──────────────────── Config Models ──────────────────────


class ClickHouseConfig(BaseModel):
    """ClickHouse connection and server-side settings."""

    host: str = "localhost"
    port: int = 8123
    username: str = "default"
    password: SecretStr | None = None
    secure: bool = False
    timeout: float = 300.0
    restart_command: str = "systemctl restart clickhouse-server"
    config_dir: Path = Path("/etc/clickhouse-server")
    embedded_backup_disk: str = ""
    use_embedded_backup_restore: bool = False
    disk_mapping: dict[str, str] = Field(default_factory=dict)

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if v < 1 or v > 65535:
            msg = "Port must be between 1 and 65535"
            raise ValueError(msg)
        return v

    @property
    def url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}:{self.port}"


class GeneralConfig(BaseModel):
    """Restore behaviour shared by every command."""

    restore_schema_on_cluster: str = ""
    restore_database_mapping: dict[str, str] = Field(default_factory=dict)
    skip_tables: list[str] = Field(
        default_factory=lambda: [
            "system.*",
            "INFORMATION_SCHEMA.*",
            "information_schema.*",
            "_temporary_and_external_tables.*",
        ]
    )


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    log_file: Path | None = None
    format: LogFormat = LogFormat.CONSOLE


class AppConfig(BaseModel):
    """Top-level application configuration."""

    clickhouse: ClickHouseConfig = ClickHouseConfig()
    general: GeneralConfig = GeneralConfig()
    logging: LoggingConfig = LoggingConfig()


# ──────────────────── Server Models ──────────────────────


class Disk(BaseModel):
    """A storage disk as reported by ``system.disks``."""

    name: str
    path: str
    type: str = "local"


class LiveTable(BaseModel):
    """A table that exists on the running server."""

    database: str
    name: str
    engine: str = ""
    data_paths: list[str] = Field(default_factory=list)
    create_table_query: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.name}"


# ──────────────────── Metadata Models ────────────────────


class Part(BaseModel):
    """One data part of a captured table, e.g. ``202301_1_1_0``."""

    model_config = ConfigDict(extra="ignore")

    name: str

    @property
    def partition_id(self) -> str:
        return self.name.split("_")[0]


class TableDescriptor(BaseModel):
    """Captured schema and parts of one table, loaded from ``metadata/<db>/<table>.json``."""

    model_config = ConfigDict(extra="ignore")

    database: str
    table: str
    query: str = ""
    parts: dict[str, list[Part]] = Field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.table}"

    @property
    def kind(self) -> ObjectKind:
        """Guess the object kind from the captured DDL."""
        if " DICTIONARY " in self.query:
            return ObjectKind.DICTIONARY
        if " MATERIALIZED VIEW " in self.query:
            return ObjectKind.MATERIALIZED_VIEW
        if " VIEW " in self.query:
            return ObjectKind.VIEW
        return ObjectKind.TABLE


class TableTitle(BaseModel):
    database: str
    table: str


class DatabaseMeta(BaseModel):
    """A captured database and its CREATE DATABASE statement."""

    model_config = ConfigDict(extra="ignore")

    name: str
    engine: str = ""
    query: str = ""


class FunctionMeta(BaseModel):
    """A captured user-defined SQL function."""

    model_config = ConfigDict(extra="ignore")

    name: str
    create_query: str


class BackupMetadata(BaseModel):
    """The ``metadata.json`` manifest written next to a backup."""

    model_config = ConfigDict(extra="ignore")

    backup_name: str = ""
    creation_date: datetime | None = None
    disks: dict[str, str] = Field(default_factory=dict)
    databases: list[DatabaseMeta] = Field(default_factory=list)
    tables: list[TableTitle] = Field(default_factory=list)
    functions: list[FunctionMeta] = Field(default_factory=list)

    # Runtime flags, never read from the manifest
    legacy: bool = Field(default=False, exclude=True)
    embedded: bool = Field(default=False, exclude=True)


class RestoreRequest(BaseModel):
    """Parameters for a restore operation."""

    backup_name: str = ""
    table_pattern: str = ""
    database_mapping: list[str] = Field(default_factory=list)
    partitions: list[str] = Field(default_factory=list)
    schema_only: bool = False
    data_only: bool = False
    drop_table: bool = False
    ignore_dependencies: bool = False
    rbac_only: bool = False
    configs_only: bool = False

    @field_validator("backup_name")
    @classmethod
    def clean_backup_name(cls, v: str) -> str:
        return "".join(ch for ch in v if ch not in "\t\r\n")

    @model_validator(mode="after")
    def check_flags(self) -> RestoreRequest:
        if self.schema_only and self.data_only:
            # both flags mean "everything", same as neither
            self.schema_only = self.data_only = False
        return self

    @property
    def restore_schema(self) -> bool:
        return not self.data_only

    @property
    def restore_data(self) -> bool:
        return not self.schema_only
