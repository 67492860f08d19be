"""Source → destination database renaming applied throughout a restore."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable, Iterator

from ch_restore.core.exceptions import ConfigError


class DatabaseMapping:
    """Rename table mapping captured database names to destination names.

    Lookups of unmapped names return the name unchanged.
    """

    def __init__(self, rules: dict[str, str] | None = None) -> None:
        self._rules: dict[str, str] = dict(rules or {})

    @classmethod
    def parse(
            cls,
            declarations: Iterable[str],
            defaults: dict[str, str] | None = None,
    ) -> DatabaseMapping:
        """Build a mapping from ``src:dst[,src2:dst2]`` declarations.

        Raises:
            ConfigError: If a rule does not split into exactly two non-empty names.
        """
        rules = dict(defaults or {})
        for declaration in declarations:
            for rule in declaration.split(","):
                names = rule.split(":")
                if len(names) != 2 or not names[0].strip() or not names[1].strip():
                    raise ConfigError(
                        f"restore-database-mapping {rule!r} should only have "
                        "srcDatabase:destinationDatabase format for each map rule"
                    )
                rules[names[0].strip()] = names[1].strip()
        return cls(rules)

    def destination(self, source: str) -> str:
        return self._rules.get(source, source)

    def is_mapped(self, source: str) -> bool:
        return source in self._rules

    def rewrite_table_pattern(self, table_pattern: str) -> str:
        """Translate a pattern over captured names into one over destination names.

        ``db1.*`` with ``db1:db2`` becomes ``db2.*``; wildcard database parts
        that match a mapped source gain an extra entry for its destination.
        An empty pattern matches everything and is returned unchanged.
        """
        if not self._rules or not table_pattern.strip():
            return table_pattern
        result: list[str] = []
        for item in (p.strip() for p in table_pattern.split(",")):
            if not item:
                continue
            db_part, dot, table_part = item.partition(".")
            if not dot:
                table_part = "*"
            if db_part in self._rules:
                result.append(f"{self._rules[db_part]}.{table_part}")
                continue
            result.append(item)
            for source, target in self._rules.items():
                if fnmatch.fnmatchcase(source, db_part) and not fnmatch.fnmatchcase(target, db_part):
                    result.append(f"{target}.{table_part}")
        return ",".join(dict.fromkeys(result))

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(self._rules.items())

    def as_dict(self) -> dict[str, str]:
        return dict(self._rules)

    def __bool__(self) -> bool:
        return bool(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"<DatabaseMapping {self._rules}>"
