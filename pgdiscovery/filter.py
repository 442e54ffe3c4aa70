"""Regexp filters for cluster and database names."""

from __future__ import annotations

import re

from pgdiscovery.errors import DiscoveryConfigError


def _compile(pattern: str | None, what: str) -> re.Pattern[str] | None:
    if pattern is None:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise DiscoveryConfigError(f"Invalid {what} pattern {pattern!r}: {exc}") from exc


class Filter:
    """Include/exclude matcher for a cluster name and its databases.

    Patterns are searched (unanchored), so ``"test"`` matches ``"mytest"``.
    A ``None`` optional pattern means no restriction.
    """

    def __init__(
        self,
        name: str,
        db: str | None = None,
        exclude_name: str | None = None,
        exclude_db: str | None = None,
    ) -> None:
        self._name = _compile(name, "name")
        self._db = _compile(db, "db")
        self._exclude_name = _compile(exclude_name, "exclude_name")
        self._exclude_db = _compile(exclude_db, "exclude_db")

    def match_name(self, name: str) -> bool:
        """True if *name* matches the name pattern and not the exclude pattern."""
        if self._exclude_name is not None and self._exclude_name.search(name):
            return False
        return self._name.search(name) is not None

    def match_db(self, name: str) -> bool:
        """True if the database *name* passes the db include/exclude patterns."""
        if self._exclude_db is not None and self._exclude_db.search(name):
            return False
        if self._db is None:
            return True
        return self._db.search(name) is not None
