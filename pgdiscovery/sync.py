"""Subscriber synchronisation shared by all discovery providers.

Every provider owns one or more :class:`ServiceSet` engines (its
authoritative view) plus a map of :class:`Subscriber` objects. On each tick
the provider calls :func:`sync_subscribers` while holding its own lock; the
function diffs the merged engine state against each subscriber's private
mirror and delivers the delta through the subscriber callbacks.

The protocol is optimistic: ``synced_services`` is updated before the
callbacks run, so a delta whose callback raised is not retried.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from pgdiscovery.mapops import full_join
from pgdiscovery.service import AddServiceFunc, RemoveServiceFunc, Service, Target

logger = logging.getLogger(__name__)

# (engine index, service id, target) -> outgoing descriptor
Describe = Callable[[int, str, Target], Service]


class ServiceSet:
    """Authoritative set of one polling engine with a change counter."""

    def __init__(self) -> None:
        self.targets: dict[str, Target] = {}
        self.version = 0

    def update(self, fresh: Mapping[str, Target]) -> int:
        """Add keys new in *fresh*, drop keys missing from it.

        The version advances once per individual insertion and deletion.
        Existing keys are kept as they are. Returns the number of mutations.
        """
        changes = 0
        for service_id, target in fresh.items():
            if service_id not in self.targets:
                self.targets[service_id] = target
                self.version += 1
                changes += 1
        for service_id in list(self.targets):
            if service_id not in fresh:
                del self.targets[service_id]
                self.version += 1
                changes += 1
        return changes


@dataclass
class Subscriber:
    subscriber_id: str
    add_service: AddServiceFunc
    remove_service: RemoveServiceFunc
    synced_services: dict[str, Service] = field(default_factory=dict)
    synced_version: dict[int, int] = field(default_factory=dict)


async def call_subscriber(callback, payload) -> None:
    """Invoke a subscriber callback, awaiting it when it is a coroutine."""
    result = callback(payload)
    if inspect.isawaitable(result):
        await result


def _merged(engines: Sequence[ServiceSet]) -> dict[str, tuple[int, Target]]:
    current: dict[str, tuple[int, Target]] = {}
    for idx, engine in enumerate(engines):
        for service_id, target in engine.targets.items():
            current[service_id] = (idx, target)
    return current


async def subscribe(
    subscribers: dict[str, Subscriber],
    subscriber_id: str,
    add_service: AddServiceFunc,
    remove_service: RemoveServiceFunc,
    engines: Sequence[ServiceSet],
    describe: Describe,
) -> None:
    """Register a subscriber and push the complete current state to it.

    A subscriber registered under an existing id replaces it with fresh state.
    """
    sub = Subscriber(subscriber_id, add_service, remove_service)
    subscribers[subscriber_id] = sub
    for idx, engine in enumerate(engines):
        for service_id, target in engine.targets.items():
            sub.synced_services[service_id] = describe(idx, service_id, target)
        sub.synced_version[idx] = engine.version

    if sub.synced_services:
        logger.debug(
            "Subscriber '%s' receives %d initial service(s)", subscriber_id, len(sub.synced_services)
        )
        try:
            await call_subscriber(add_service, dict(sub.synced_services))
        except Exception as exc:
            logger.error("Error adding synced services to '%s': %s", subscriber_id, exc)
            raise


async def unsubscribe(subscribers: dict[str, Subscriber], subscriber_id: str) -> None:
    """Remove every synced service from the subscriber and forget it.

    Unknown ids are ignored.
    """
    sub = subscribers.pop(subscriber_id, None)
    if sub is None:
        return
    await call_subscriber(sub.remove_service, list(sub.synced_services))


async def sync_subscribers(
    subscribers: Mapping[str, Subscriber],
    engines: Sequence[ServiceSet],
    describe: Describe,
) -> None:
    """Deliver the changes since each subscriber's last sync.

    Subscribers whose recorded engine versions are all current are skipped.
    Each callback runs at most once per subscriber per call. The first
    callback error is raised after its subscriber's state has already been
    updated.
    """
    for sub in subscribers.values():
        need_sync = False
        for idx, engine in enumerate(engines):
            if sub.synced_version.get(idx) != engine.version:
                sub.synced_version[idx] = engine.version
                need_sync = True
        if not need_sync:
            continue

        current = _merged(engines)
        removed: list[str] = []
        added: dict[str, Service] = {}
        for pair in full_join(current, sub.synced_services):
            if pair.left is None:
                removed.append(pair.right)
                del sub.synced_services[pair.right]
            elif pair.right is None:
                idx, target = current[pair.left]
                service = describe(idx, pair.left, target)
                added[pair.left] = service
                sub.synced_services[pair.left] = service

        if removed:
            logger.debug("Removing %d service(s) from subscriber '%s'", len(removed), sub.subscriber_id)
            await call_subscriber(sub.remove_service, removed)
        if added:
            logger.debug("Appending %d service(s) to subscriber '%s'", len(added), sub.subscriber_id)
            await call_subscriber(sub.add_service, added)
