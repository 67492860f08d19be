"""Small helpers shared across the restore pipeline."""

from __future__ import annotations

import fnmatch
import re
from datetime import timedelta
from urllib.parse import unquote

_UNSAFE_FILE_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")


def table_path_encode(name: str) -> str:
    """Escape a database or table name the way ClickHouse names it on disk.

    Every byte outside ``[A-Za-z0-9_]`` becomes ``%XX``.
    """
    return _UNSAFE_FILE_NAME_RE.sub(
        lambda m: "".join(f"%{b:02X}" for b in m.group().encode("utf-8")), name
    )


def table_path_decode(name: str) -> str:
    return unquote(name)


def humanize_duration(seconds: float) -> str:
    """Render an elapsed time like ``1m2.345s`` or ``1y2d3h0m0s``."""
    delta = timedelta(seconds=seconds)
    days = delta.days
    rest = delta.seconds + delta.microseconds / 1_000_000
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    out = ""
    if days >= 365:
        out += f"{days // 365}y"
        days %= 365
    if out or days:
        out += f"{days}d"
    if out or hours:
        out += f"{int(hours)}h"
    if out or minutes:
        out += f"{int(minutes)}m"
    return f"{out}{secs:.3f}".rstrip("0").rstrip(".") + "s"


def quote_identifier(name: str) -> str:
    """Backtick-quote a ClickHouse identifier."""
    return "`" + name.replace("\\", "\\\\").replace("`", "\\`") + "`"


def quote_string(value: str) -> str:
    """Single-quote a ClickHouse string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def match_table_pattern(full_name: str, table_pattern: str) -> bool:
    """Match ``db.table`` against a comma-separated list of glob patterns.

    An empty pattern matches everything.
    """
    patterns = [p.strip() for p in table_pattern.split(",") if p.strip()]
    if not patterns:
        return True
    return any(fnmatch.fnmatchcase(full_name, p) for p in patterns)
