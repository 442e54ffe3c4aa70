"""Yandex Cloud managed PostgreSQL discovery provider.

Each configured folder becomes an engine that polls the cloud API on its own
interval. The provider merges all engines when synchronising subscribers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pgdiscovery.cloud.yandex import AuthorizedKey, IAMToken, MDBClient, load_authorized_key
from pgdiscovery.config import YandexConfig, labels_to_dict, parse_config_list
from pgdiscovery.errors import DiscoveryError, PollError
from pgdiscovery.filter import Filter
from pgdiscovery.providers.base import Discovery, report_error, wait_stopped
from pgdiscovery.service import YANDEX_MDB, AddServiceFunc, RemoveServiceFunc, Service, Target
from pgdiscovery.sync import ServiceSet, Subscriber, subscribe, sync_subscribers, unsubscribe

logger = logging.getLogger(__name__)

MDB_DOMAIN_SUFFIX = ".mdb.yandexcloud.net"
POOLER_PORT = 6432
SYNC_INTERVAL = 10  # seconds between subscriber sync passes

ClientFactory = Callable[[YandexConfig, AuthorizedKey], Any]


def make_valid_metric_name(s: str) -> str:
    """Strip the managed domain suffix and replace invalid characters with ``_``."""
    out = []
    for i, ch in enumerate(s.replace(MDB_DOMAIN_SUFFIX, "", 1)):
        if ("a" <= ch <= "z") or ("A" <= ch <= "Z") or ch in "_:" or ("0" <= ch <= "9" and i > 0):
            out.append(ch)
        else:
            out.append("_")
    return "".join(out)


def default_client_factory(config: YandexConfig, key: AuthorizedKey) -> MDBClient:
    return MDBClient(IAMToken(key))


class YandexEngine:
    """Polls one folder and keeps its authoritative service set."""

    def __init__(self, config: YandexConfig, client: Any, lock: asyncio.Lock) -> None:
        self.config = config
        self.client = client
        self.services = ServiceSet()
        self.filters = [Filter(c.name, c.db, c.exclude_name, c.exclude_db) for c in config.clusters]
        self._lock = lock

    @property
    def interval(self) -> float:
        return self.config.refresh_interval * 60

    async def poll(self) -> dict[str, Target]:
        """Fetch the folder's clusters and build one target per host and database."""
        clusters = await self.client.get_postgresql_clusters(self.config.folder_id, self.filters)
        labels = labels_to_dict(self.config.target_labels)
        fresh: dict[str, Target] = {}
        for cluster in clusters:
            for host in cluster.hosts:
                for database in cluster.databases:
                    service_id = make_valid_metric_name(f"{host.name}_{database.name}")
                    fresh[service_id] = Target(
                        dsn=(
                            f"postgresql://{self.config.user}:{self.config.password}"
                            f"@{host.name}:{POOLER_PORT}/{database.name}"
                        ),
                        name=cluster.name,
                        labels=labels,
                    )
        return fresh

    async def tick(self) -> None:
        fresh = await self.poll()
        async with self._lock:
            changes = self.services.update(fresh)
        if changes:
            logger.debug(
                "[Yandex.Cloud SD] Folder '%s': %d change(s), version %d",
                self.config.folder_id, changes, self.services.version,
            )

    async def run(self, stop_event: asyncio.Event, errors: asyncio.Queue | None = None) -> None:
        while True:
            try:
                await self.tick()
            except Exception as exc:
                logger.error("[Yandex.Cloud SD] Failed to get cluster list, error: %s", exc)
                report_error(errors, exc)
            if await wait_stopped(stop_event, self.interval):
                logger.debug("[Yandex.Cloud SD] Shutting down engine for folder '%s'.", self.config.folder_id)
                return


class YandexDiscovery(Discovery):
    """Discovers managed PostgreSQL clusters in one or more cloud folders."""

    def __init__(self, provider_id: str, client_factory: ClientFactory | None = None) -> None:
        self.provider_id = provider_id
        self.config: list[YandexConfig] = []
        self.keys: list[AuthorizedKey] = []
        self.engines: list[YandexEngine] = []
        self.subscribers: dict[str, Subscriber] = {}
        self.sync_interval: float = SYNC_INTERVAL
        self._client_factory = client_factory or default_client_factory
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------ #
    # Discovery interface
    # ------------------------------------------------------------------ #

    def init(self, config: Any) -> None:
        logger.debug("[Yandex.Cloud:%s SD] Init discovery config...", self.provider_id)
        try:
            configs = parse_config_list(YandexConfig, config)
            for c in configs:
                c.resolve_password()
                for cluster in c.clusters:
                    Filter(cluster.name, cluster.db, cluster.exclude_name, cluster.exclude_db)
            keys = [load_authorized_key(c.authorized_key) for c in configs]
        except DiscoveryError as exc:
            logger.error("[Yandex.Cloud SD] Failed to init discovery config, error: %s", exc)
            raise
        self.config = configs
        self.keys = keys

    async def start(
        self,
        errors: asyncio.Queue | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        if not self.config:
            raise PollError(f"yandex discovery '{self.provider_id}' is not initialised")
        if stop_event is not None:
            self._stop_event = stop_event

        self.engines = [
            YandexEngine(c, self._client_factory(c, key), self._lock)
            for c, key in zip(self.config, self.keys)
        ]
        # Set only when this loop exits.
        engines_stop = asyncio.Event()
        tasks = [asyncio.create_task(e.run(engines_stop, errors)) for e in self.engines]
        try:
            while True:
                try:
                    await self.sync()
                except Exception as exc:
                    logger.error("[Yandex.Cloud SD] Failed to sync, error: %s", exc)
                    report_error(errors, exc)
                if await wait_stopped(self._stop_event, self.sync_interval):
                    logger.debug("[Yandex.Cloud:%s SD] Stopped.", self.provider_id)
                    return
        finally:
            engines_stop.set()
            await asyncio.gather(*tasks, return_exceptions=True)
            # Engines may have finished a tick after the last pass.
            try:
                await self.sync()
            except Exception as exc:
                logger.error("[Yandex.Cloud SD] Failed to sync, error: %s", exc)
                report_error(errors, exc)
            for engine in self.engines:
                aclose = getattr(engine.client, "aclose", None)
                if aclose is not None:
                    await aclose()

    def stop(self) -> None:
        self._stop_event.set()

    async def subscribe(
        self,
        subscriber_id: str,
        add_service: AddServiceFunc,
        remove_service: RemoveServiceFunc,
    ) -> None:
        logger.debug("[Yandex.Cloud SD] Init subscribe '%s'", subscriber_id)
        async with self._lock:
            await subscribe(
                self.subscribers, subscriber_id, add_service, remove_service,
                self._engine_sets(), self._describe,
            )

    async def unsubscribe(self, subscriber_id: str) -> None:
        async with self._lock:
            await unsubscribe(self.subscribers, subscriber_id)

    # ------------------------------------------------------------------ #
    # Polling
    # ------------------------------------------------------------------ #

    async def sync(self) -> None:
        """Push engine changes to every subscriber."""
        async with self._lock:
            logger.debug("[Yandex.Cloud SD] Sync...")
            await sync_subscribers(self.subscribers, self._engine_sets(), self._describe)

    def _engine_sets(self) -> list[ServiceSet]:
        return [engine.services for engine in self.engines]

    def _describe(self, _engine_idx: int, service_id: str, target: Target) -> Service:
        return Service(
            service_id=service_id,
            dsn=target.dsn,
            const_labels={
                "mdb_cluster": target.name,
                "provider": YANDEX_MDB,
                "provider_id": self.provider_id,
            },
            target_labels=dict(target.labels),
        )
