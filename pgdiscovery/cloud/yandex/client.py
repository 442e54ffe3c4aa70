"""Managed PostgreSQL REST API client.

Uses httpx for async HTTP. Every list endpoint is paginated with
``pageToken`` / ``nextPageToken``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from pgdiscovery.errors import CloudAPIError, CloudAuthError
from pgdiscovery.filter import Filter

logger = logging.getLogger(__name__)

MDB_POSTGRESQL_URL = "https://mdb.api.cloud.yandex.net/managed-postgresql/v1"

ACTIVE_CLUSTER_STATUSES = ("RUNNING", "UPDATING")
ALIVE_HOST_HEALTH = "ALIVE"


class TokenSource(Protocol):
    async def get_token(self) -> str: ...


@dataclass
class Database:
    name: str
    owner: str = ""


@dataclass
class Host:
    name: str
    zone_id: str = ""
    role: str = ""
    health: str = ""


@dataclass
class Cluster:
    id: str
    name: str
    folder_id: str = ""
    health: str = ""
    status: str = ""
    hosts: list[Host] = field(default_factory=list)
    databases: list[Database] = field(default_factory=list)


class MDBClient:
    """Thin async wrapper around the managed PostgreSQL API.

    A single :class:`httpx.AsyncClient` is reused across calls. Call
    :meth:`aclose` (or use as an async context manager) when done.
    """

    def __init__(
        self,
        token_source: TokenSource,
        base_url: str = MDB_POSTGRESQL_URL,
        timeout: float = 30.0,
        page_size: int = 100,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_source = token_source
        self.page_size = page_size
        self._client = httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()
        close = getattr(self.token_source, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "MDBClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def list_clusters(self, folder_id: str) -> list[dict]:
        return await self._list("/clusters", "clusters", {"folderId": folder_id})

    async def list_hosts(self, cluster_id: str) -> list[dict]:
        return await self._list(f"/clusters/{cluster_id}/hosts", "hosts")

    async def list_databases(self, cluster_id: str) -> list[dict]:
        return await self._list(f"/clusters/{cluster_id}/databases", "databases")

    async def get_postgresql_clusters(
        self, folder_id: str, filters: Sequence[Filter]
    ) -> list[Cluster]:
        """Running clusters of *folder_id* that match *filters*.

        Each cluster carries its alive hosts and the databases accepted by
        any filter that matched the cluster name. Clusters without matching
        databases are dropped.
        """
        clusters: list[Cluster] = []
        for raw in await self.list_clusters(folder_id):
            name = raw.get("name", "")
            status = raw.get("status", "")
            if status not in ACTIVE_CLUSTER_STATUSES:
                logger.debug("[Yandex.Cloud SD] Cluster '%s' is not running, skipped.", name)
                continue

            matched = [f for f in filters if f.match_name(name)]
            if not matched:
                logger.debug("[Yandex.Cloud SD] Cluster '%s' not matched in filters, skipped.", name)
                continue

            cluster_id = raw.get("id", "")
            hosts = [
                Host(
                    name=h.get("name", ""),
                    zone_id=h.get("zoneId", ""),
                    role=h.get("role", ""),
                    health=h.get("health", ""),
                )
                for h in await self.list_hosts(cluster_id)
                if h.get("health") == ALIVE_HOST_HEALTH
            ]
            logger.debug("[Yandex.Cloud SD] In cluster '%s' found '%d' hosts.", name, len(hosts))

            databases = [
                Database(name=d.get("name", ""), owner=d.get("owner", ""))
                for d in await self.list_databases(cluster_id)
                if any(f.match_db(d.get("name", "")) for f in matched)
            ]
            if not databases:
                logger.debug("[Yandex.Cloud SD] No databases found in cluster '%s'.", name)
                continue

            clusters.append(
                Cluster(
                    id=cluster_id,
                    name=name,
                    folder_id=raw.get("folderId", ""),
                    health=raw.get("health", ""),
                    status=status,
                    hosts=hosts,
                    databases=databases,
                )
            )
        return clusters

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _list(self, path: str, key: str, params: dict[str, Any] | None = None) -> list[dict]:
        items: list[dict] = []
        query: dict[str, Any] = dict(params or {})
        query["pageSize"] = self.page_size
        while True:
            page = await self._get(path, query)
            items.extend(page.get(key) or [])
            token = page.get("nextPageToken")
            if not token:
                return items
            query["pageToken"] = token

    async def _get(self, path: str, params: dict[str, Any]) -> dict:
        url = f"{self.base_url}{path}"
        token = await self.token_source.get_token()
        try:
            response = await self._client.get(
                url, params=params, headers={"Authorization": f"Bearer {token}"}
            )
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            raise CloudAPIError(f"Cannot reach cloud API at {url}: {exc}") from exc
        if response.status_code in (401, 403):
            raise CloudAuthError(f"cloud API returned {response.status_code} for {url}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CloudAPIError(f"cloud API error for {url}: {exc}") from exc
        data = response.json()
        return data if isinstance(data, dict) else {}
