"""Local catalog discovery provider.

Lists the databases of one PostgreSQL instance and exposes each database
that passes the configured filter as a separate service.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import psycopg2

from pgdiscovery.config import PostgresConfig, labels_to_dict, parse_config
from pgdiscovery.errors import DiscoveryConfigError, DiscoveryError, PollError
from pgdiscovery.filter import Filter
from pgdiscovery.providers.base import Discovery, report_error, wait_stopped
from pgdiscovery.service import POSTGRES, AddServiceFunc, RemoveServiceFunc, Service, Target
from pgdiscovery.store import CatalogStore
from pgdiscovery.sync import ServiceSet, Subscriber, subscribe, sync_subscribers, unsubscribe

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 10  # seconds


class PostgresDiscovery(Discovery):
    """Discovers the databases of a PostgreSQL instance."""

    def __init__(self, provider_id: str, store: CatalogStore | None = None) -> None:
        self.provider_id = provider_id
        self.config: PostgresConfig | None = None
        self.password: str | None = None
        self.subscribers: dict[str, Subscriber] = {}
        self.db = store
        self.db_filter: Filter | None = None
        self._engine = ServiceSet()
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------ #
    # Discovery interface
    # ------------------------------------------------------------------ #

    def init(self, config: Any) -> None:
        logger.debug("[Postgres:%s SD] Init discovery config...", self.provider_id)
        try:
            self.config = parse_config(PostgresConfig, config)
            self.db_filter = Filter(".*", self.config.db, None, self.config.exclude_db)
        except DiscoveryError as exc:
            logger.error("[Postgres SD] Failed to init discovery config, error: %s", exc)
            raise
        if self.config.password_from_env:
            self.password = os.environ.get(self.config.password_from_env, "")

    async def start(
        self,
        errors: asyncio.Queue | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        config = self._require_config()
        if stop_event is not None:
            self._stop_event = stop_event
        interval = config.refresh_interval or DEFAULT_REFRESH_INTERVAL

        while True:
            try:
                await self.sync()
            except Exception as exc:
                logger.error("[Postgres:%s SD] Failed to sync, error: %s", self.provider_id, exc)
                report_error(errors, exc)

            if await wait_stopped(self._stop_event, interval):
                logger.debug("[Postgres:%s SD] Stopped.", self.provider_id)
                return

    def stop(self) -> None:
        self._stop_event.set()

    async def subscribe(
        self,
        subscriber_id: str,
        add_service: AddServiceFunc,
        remove_service: RemoveServiceFunc,
    ) -> None:
        async with self._lock:
            await subscribe(
                self.subscribers, subscriber_id, add_service, remove_service,
                [self._engine], self._describe,
            )

    async def unsubscribe(self, subscriber_id: str) -> None:
        async with self._lock:
            await unsubscribe(self.subscribers, subscriber_id)

    # ------------------------------------------------------------------ #
    # Polling
    # ------------------------------------------------------------------ #

    async def sync(self) -> None:
        """List catalog databases and push the changes to subscribers.

        A failed listing leaves the authoritative set untouched.
        """
        store = self.ensure_db()
        try:
            dbs = await store.databases()
        except psycopg2.Error as exc:
            raise PollError(f"failed to list databases: {exc}") from exc

        services = self.get_services(dbs)
        async with self._lock:
            self._engine.update(services)
            await sync_subscribers(self.subscribers, [self._engine], self._describe)

    def get_services(self, dbs: list[str]) -> dict[str, Target]:
        if self.db_filter is None:
            raise PollError(f"postgres discovery '{self.provider_id}' is not initialised")
        services: dict[str, Target] = {}
        for db in dbs:
            if not self.db_filter.match_db(db):
                continue
            service_id = self.get_service_id(db)
            services[service_id] = Target(dsn=self.get_dsn(db), name=service_id)
        return services

    def get_service_id(self, db: str) -> str:
        return f"{self.provider_id}_{db}"

    def get_dsn(self, db: str) -> str:
        store = self.ensure_db()
        return f"postgres://{store.user}:{store.password}@{store.host}:{store.port}/{db}"

    def ensure_db(self) -> CatalogStore:
        """Create the catalog store on first use."""
        if self.db is not None:
            return self.db
        config = self._require_config()
        try:
            self.db = CatalogStore(config.conninfo, password=self.password)
        except psycopg2.Error as exc:
            raise DiscoveryConfigError(f"invalid conninfo: {exc}") from exc
        return self.db

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _require_config(self) -> PostgresConfig:
        if self.config is None:
            raise PollError(f"postgres discovery '{self.provider_id}' is not initialised")
        return self.config

    def _describe(self, _engine_idx: int, service_id: str, target: Target) -> Service:
        config = self._require_config()
        return Service(
            service_id=service_id,
            dsn=target.dsn,
            const_labels={"provider": POSTGRES, "provider_id": self.provider_id},
            target_labels=labels_to_dict(config.target_labels),
        )
