"""Service descriptors handed to discovery subscribers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Union

# Provider type names used in configuration documents.
YANDEX_MDB = "yandex-mdb"
POSTGRES = "postgres"
SCRIPT = "script"


@dataclass(frozen=True)
class Service:
    """A discovered monitoring target.

    Never mutated after it has been handed to a subscriber; a changed target
    is delivered as a removal followed by an addition.
    """

    service_id: str
    dsn: str
    const_labels: dict[str, str] = field(default_factory=dict)
    target_labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Target:
    """One entry of a provider's authoritative set, before labelling."""

    dsn: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)


# Callbacks may be plain functions or coroutine functions.
AddServiceFunc = Callable[[dict[str, Service]], Union[None, Awaitable[None]]]
RemoveServiceFunc = Callable[[list[str]], Union[None, Awaitable[None]]]
