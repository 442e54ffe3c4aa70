"""Abstract discovery provider interface.

Every discovery source (cloud API, local catalog, script) implements this
interface. The metrics core drives providers only through it.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any

from pgdiscovery.service import AddServiceFunc, RemoveServiceFunc

logger = logging.getLogger(__name__)


class Discovery(abc.ABC):
    """Abstract interface for any discovery provider."""

    @abc.abstractmethod
    def init(self, config: Any) -> None:
        """Validate the raw provider configuration.

        Raises :class:`~pgdiscovery.errors.DiscoveryConfigError` on bad input.
        Does not start polling.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def start(
        self,
        errors: asyncio.Queue | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Poll until *stop_event* (or :meth:`stop`) is set.

        Poll failures are logged and put on *errors*; they never end the loop.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def stop(self) -> None:
        """Ask the poll loop to exit after its current tick."""
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(
        self,
        subscriber_id: str,
        add_service: AddServiceFunc,
        remove_service: RemoveServiceFunc,
    ) -> None:
        """Register callbacks invoked when services appear or disappear."""
        raise NotImplementedError

    @abc.abstractmethod
    async def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber, first removing all of its synced services."""
        raise NotImplementedError


async def wait_stopped(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to *seconds*; return True as soon as *stop_event* is set."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


def report_error(errors: asyncio.Queue | None, exc: BaseException) -> None:
    """Hand a poll error to the caller's queue without blocking."""
    if errors is None:
        return
    try:
        errors.put_nowait(exc)
    except asyncio.QueueFull:
        logger.warning("Error queue full, dropping: %s", exc)
