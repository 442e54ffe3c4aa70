"""PostgreSQL catalog access for the local catalog provider.

A small wrapper around a psycopg2 :class:`ThreadedConnectionPool`. The
blocking calls run in a worker thread so the poll loop stays responsive.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Iterator

from psycopg2.extensions import parse_dsn
from psycopg2.pool import ThreadedConnectionPool

logger = logging.getLogger(__name__)

DATABASES_QUERY = """
    SELECT datname FROM pg_database
     WHERE NOT datistemplate AND datallowconn
       AND has_database_privilege(datname, 'CONNECT')
       AND NOT (version() LIKE '%yandex%' AND datname = 'postgres')
"""


class CatalogStore:
    """Pooled connection to the bootstrap database.

    Args:
        conninfo: libpq connection string (URI or ``key=value`` form).
        password: Overrides the password from *conninfo* when given.
    """

    def __init__(
        self,
        conninfo: str,
        password: str | None = None,
        minconn: int = 1,
        maxconn: int = 2,
    ) -> None:
        self.params: dict[str, str] = parse_dsn(conninfo)
        if password is not None:
            self.params["password"] = password
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool: ThreadedConnectionPool | None = None

    @property
    def host(self) -> str:
        return self.params.get("host", "localhost")

    @property
    def port(self) -> int:
        return int(self.params.get("port") or 5432)

    @property
    def user(self) -> str:
        return self.params.get("user", "")

    @property
    def password(self) -> str:
        return self.params.get("password", "")

    def _ensure_pool(self) -> ThreadedConnectionPool:
        if self._pool is None:
            logger.debug("Opening catalog pool to %s:%d", self.host, self.port)
            self._pool = ThreadedConnectionPool(self._minconn, self._maxconn, **self.params)
        return self._pool

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        pool = self._ensure_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)

    def _databases(self) -> list[str]:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(DATABASES_QUERY)
                rows = cur.fetchall()
            conn.rollback()
        return [row[0] for row in rows]

    def _query_row(self, query: str, params: tuple = ()) -> tuple | None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                row = cur.fetchone()
            conn.rollback()
        return row

    async def databases(self) -> list[str]:
        """Names of databases the bootstrap user may connect to."""
        return await asyncio.to_thread(self._databases)

    async def query_row(self, query: str, params: tuple = ()) -> tuple | None:
        """Run *query* and return its first row (or None)."""
        return await asyncio.to_thread(self._query_row, query, params)

    def close(self) -> None:
        if self._pool is not None:
            logger.info("Closing catalog pool.")
            self._pool.closeall()
            self._pool = None
