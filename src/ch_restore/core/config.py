"""Configuration loading and management for ch-restore.

Configuration sources (highest to lowest priority):
  1. CLI arguments (passed directly)
  2. Environment variables (CH_RESTORE_* prefix)
  3. Config file (~/.config/ch-restore/config.toml)
  4. Defaults
"""

from __future__ import annotations

import contextlib
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

import tomli_w
from pydantic import ValidationError

from ch_restore.core.exceptions import ConfigError
from ch_restore.core.models import (
    AppConfig,
    ClickHouseConfig,
    GeneralConfig,
    LogFormat,
    LoggingConfig,
)

# ──────────────────── Paths ──────────────────────────────

_APP_NAME = "ch-restore"


def _get_config_dir() -> Path:
    """Return the platform-appropriate config directory."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / _APP_NAME


def _get_data_dir() -> Path:
    """Return the platform-appropriate data directory."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / _APP_NAME


CONFIG_DIR = _get_config_dir()
DATA_DIR = _get_data_dir()
CONFIG_FILE = CONFIG_DIR / "config.toml"
LOG_DIR = DATA_DIR / "logs"

# ──────────────────── Environment Loading ────────────────

_ENV_PREFIX = "CH_RESTORE_"


def _env(key: str, default: str | None = None) -> str | None:
    """Read an environment variable with the CH_RESTORE_ prefix."""
    return os.environ.get(f"{_ENV_PREFIX}{key}", default)


def _env_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def parse_mapping(value: str) -> dict[str, str]:
    """Parse ``src:dst,src2:dst2`` into a dict (used for env overrides)."""
    result: dict[str, str] = {}
    for rule in filter(None, (r.strip() for r in value.split(","))):
        src, sep, dst = rule.partition(":")
        if not sep or not src or not dst:
            raise ConfigError(f"Invalid mapping rule {rule!r}, expected name:value")
        result[src] = dst
    return result


def _load_clickhouse_from_env() -> dict[str, Any]:
    """Load ClickHouse connection overrides from environment."""
    overrides: dict[str, Any] = {}
    if h := _env("CLICKHOUSE_HOST"):
        overrides["host"] = h
    if p := _env("CLICKHOUSE_PORT"):
        try:
            overrides["port"] = int(p)
        except ValueError as exc:
            raise ConfigError(f"Invalid CLICKHOUSE_PORT in environment: {p}") from exc
    if u := _env("CLICKHOUSE_USERNAME"):
        overrides["username"] = u
    if pw := _env("CLICKHOUSE_PASSWORD"):
        overrides["password"] = pw
    if s := _env("CLICKHOUSE_SECURE"):
        overrides["secure"] = _env_bool(s)
    if t := _env("CLICKHOUSE_TIMEOUT"):
        overrides["timeout"] = float(t)
    if rc := _env("CLICKHOUSE_RESTART_COMMAND"):
        overrides["restart_command"] = rc
    if cd := _env("CLICKHOUSE_CONFIG_DIR"):
        overrides["config_dir"] = Path(cd)
    if ed := _env("CLICKHOUSE_EMBEDDED_BACKUP_DISK"):
        overrides["embedded_backup_disk"] = ed
    if ue := _env("CLICKHOUSE_USE_EMBEDDED_BACKUP_RESTORE"):
        overrides["use_embedded_backup_restore"] = _env_bool(ue)
    if dm := _env("CLICKHOUSE_DISK_MAPPING"):
        overrides["disk_mapping"] = parse_mapping(dm)
    return overrides


def _load_general_from_env() -> dict[str, Any]:
    """Load general restore overrides from environment."""
    overrides: dict[str, Any] = {}
    if oc := _env("RESTORE_SCHEMA_ON_CLUSTER"):
        overrides["restore_schema_on_cluster"] = oc
    if dm := _env("RESTORE_DATABASE_MAPPING"):
        overrides["restore_database_mapping"] = parse_mapping(dm)
    if st := _env("SKIP_TABLES"):
        overrides["skip_tables"] = [s.strip() for s in st.split(",") if s.strip()]
    return overrides


def _load_logging_from_env() -> dict[str, Any]:
    """Load logging config overrides from environment."""
    overrides: dict[str, Any] = {}
    if ll := _env("LOG_LEVEL"):
        overrides["level"] = ll.upper()
    if lf := _env("LOG_FILE"):
        overrides["log_file"] = Path(lf)
    if fmt := _env("LOG_FORMAT"):
        overrides["format"] = LogFormat(fmt.lower())
    return overrides


# ──────────────────── TOML File Loading ──────────────────


def load_config_file(path: Path | None = None) -> dict[str, Any]:
    """Load and return the raw TOML config dict. Returns empty dict if file missing."""
    config_path = path or CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc


def save_config_file(config: AppConfig, path: Path | None = None) -> Path:
    """Save AppConfig to a TOML file."""
    config_path = path or CONFIG_FILE
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = _config_to_toml_dict(config)
    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)

    # Restrict file permissions (Unix only)
    with contextlib.suppress(OSError):
        config_path.chmod(0o600)

    return config_path


def _config_to_toml_dict(config: AppConfig) -> dict[str, Any]:
    """Convert an AppConfig to a TOML-serialisable dict."""
    ch_dict = config.clickhouse.model_dump(mode="json", exclude_none=True)
    if config.clickhouse.password:
        ch_dict["password"] = config.clickhouse.password.get_secret_value()

    log_dict = config.logging.model_dump(mode="json", exclude_none=True)

    return {
        "clickhouse": ch_dict,
        "general": config.general.model_dump(mode="json"),
        "logging": log_dict,
    }


# ──────────────────── Main Loader ────────────────────────


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the full application config (file + env overrides)."""
    raw = load_config_file(config_path)

    try:
        ch_data = raw.get("clickhouse", {})
        ch_data.update(_load_clickhouse_from_env())
        clickhouse = ClickHouseConfig(**ch_data)

        general_data = raw.get("general", {})
        general_data.update(_load_general_from_env())
        general = GeneralConfig(**general_data)

        log_data = raw.get("logging", {})
        log_data.update(_load_logging_from_env())
        logging_config = LoggingConfig(**log_data)
    except (ValidationError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

    return AppConfig(clickhouse=clickhouse, general=general, logging=logging_config)


def ensure_dirs() -> None:
    """Create required application directories if they don't exist."""
    for d in (CONFIG_DIR, DATA_DIR, LOG_DIR):
        d.mkdir(parents=True, exist_ok=True)
