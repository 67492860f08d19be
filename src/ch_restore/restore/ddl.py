"""Pattern-based rewrites applied to captured DDL before it is replayed."""

from __future__ import annotations

import re

from ch_restore.core.utils import quote_identifier, quote_string
from ch_restore.restore.mapping import DatabaseMapping

_CREATE_DATABASE_RE = re.compile(r"^CREATE DATABASE\s+(?:IF NOT EXISTS\s+)?(\S+)", re.M)
_ATTACH_VIEW_KINDS = ("MATERIALIZED VIEW", "WINDOW VIEW", "LIVE VIEW")
_EXPLICIT_UUID_RE = re.compile(r"\bUUID\s+'([^']+)'")
_HEAD_UUID_RE = re.compile(
    r"^((?:CREATE|ATTACH)\s+(?:TABLE|DICTIONARY|VIEW|MATERIALIZED VIEW|LIVE VIEW|WINDOW VIEW)\s+\S+)"
    r"\s+UUID\s+'[^']+'"
)
_INNER_UUID_RE = re.compile(r"\s+TO\s+INNER\s+UUID\s+'[^']+'")
_DISTRIBUTED_RE = re.compile(r"(Distributed\(\s*[^,]+,\s*)(['`]?)([^,'`\s]+)\2(\s*,)")
_DICTIONARY_DB_RE = re.compile(r"(\bDB\s+)'([^']+)'")
_STRING_LITERAL_RE = re.compile(r"('(?:[^'\\]|\\.)*')")


def rewrite_create_database(query: str, database: str) -> str:
    """Point a captured CREATE DATABASE at *database* and make it idempotent."""
    target = f"CREATE DATABASE IF NOT EXISTS {quote_identifier(database)}"
    if not query.strip():
        return target
    return _CREATE_DATABASE_RE.sub(lambda _m: target, query, count=1)


def attach_views(query: str) -> str:
    """Materialized, window and live views are ATTACHed to keep their stored state."""
    for kind in _ATTACH_VIEW_KINDS:
        query = query.replace(f"CREATE {kind}", f"ATTACH {kind}", 1)
    return query


def needs_replicated_uuid(query: str) -> bool:
    return "{uuid}" in query and "Replicated" in query


def substitute_replicated_uuid(query: str) -> tuple[str, bool]:
    """Replace ``{uuid}`` macros with the table's explicit UUID.

    Returns the rewritten query and whether a substitution was possible.
    """
    match = _EXPLICIT_UUID_RE.search(query)
    if not match:
        return query, False
    return query.replace("{uuid}", match.group(1)), True


def rewrite_database_references(query: str, mapping: DatabaseMapping) -> str:
    """Replace every qualifier naming a mapped source database.

    Covers ``db.table`` and ``` `db`.`table` ``` references (object name,
    ``TO`` clause, ``SELECT`` bodies), the database argument of
    ``Distributed(...)`` and the ``DB '...'`` source of dictionaries.
    Qualifiers inside string literals such as comments are left as they are.
    """
    if not mapping or not query:
        return query
    for source, target in mapping.items():
        qualifier = re.compile(
            rf"(?<![\w.`'/{{-])(?:`{re.escape(source)}`|{re.escape(source)}(?![\w`]))\."
        )
        chunks = _STRING_LITERAL_RE.split(query)
        query = "".join(
            chunk if i % 2 else qualifier.sub(lambda _m, t=target: f"{quote_identifier(t)}.", chunk)
            for i, chunk in enumerate(chunks)
        )

    def _distributed(m: re.Match[str]) -> str:
        database = m.group(3)
        if not mapping.is_mapped(database):
            return m.group(0)
        quote = m.group(2) or "'"
        return f"{m.group(1)}{quote}{mapping.destination(database)}{quote}{m.group(4)}"

    query = _DISTRIBUTED_RE.sub(_distributed, query)
    return _DICTIONARY_DB_RE.sub(
        lambda m: f"{m.group(1)}{quote_string(mapping.destination(m.group(2)))}", query
    )


def drop_explicit_uuid(query: str) -> str:
    """Remove the ``UUID '...'`` clause that follows the object name.

    A materialized view also loses its ``TO INNER UUID '...'`` clause, so the
    server assigns a fresh id to the inner table.
    """
    query = _HEAD_UUID_RE.sub(r"\1", query, count=1)
    return _INNER_UUID_RE.sub("", query, count=1)


def guess_create_queries(database: str, table: str) -> list[str]:
    """Stand-in DDL used to pick a DROP kind when the captured DDL is missing.

    Ordered table, dictionary, materialized view.
    """
    name = f"{quote_identifier(database)}.{quote_identifier(table)}"
    return [
        f"CREATE TABLE {name}",
        f"CREATE DICTIONARY {name}",
        f"CREATE MATERIALIZED VIEW {name}",
    ]
