"""Key-set join used to compute what changed between two service maps."""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from typing import NamedTuple, TypeVar

K = TypeVar("K", bound=Hashable)


class JoinPair(NamedTuple):
    left: Hashable | None
    right: Hashable | None


def full_join(left: Mapping[K, object], right: Mapping[K, object]) -> list[JoinPair]:
    """Full outer join of two mappings by key.

    Keys only in *left* yield ``(key, None)``, keys only in *right* yield
    ``(None, key)`` and shared keys yield ``(key, key)``. Values are ignored
    and neither input is modified. Output order is unspecified.
    """
    result: list[JoinPair] = []
    for key in left:
        if key in right:
            result.append(JoinPair(key, key))
        else:
            result.append(JoinPair(key, None))
    for key in right:
        if key not in left:
            result.append(JoinPair(None, key))
    return result
