"""Tests for the catalog store wrapper (no live PostgreSQL needed)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from pgdiscovery.store import DATABASES_QUERY, CatalogStore


def _fake_pool(rows=None, row=None):
    pool = MagicMock()
    conn = pool.getconn.return_value
    cur = conn.cursor.return_value.__enter__.return_value
    cur.fetchall.return_value = rows or []
    cur.fetchone.return_value = row
    return pool, conn, cur


class TestParams:
    def test_uri(self):
        store = CatalogStore("postgres://monitor:pw@db1:6432/postgres")
        assert (store.host, store.port, store.user, store.password) == ("db1", 6432, "monitor", "pw")

    def test_password_override(self):
        store = CatalogStore("host=db1 user=monitor password=old", password="new")
        assert store.password == "new"

    def test_defaults(self):
        store = CatalogStore("dbname=postgres")
        assert (store.host, store.port, store.user, store.password) == ("localhost", 5432, "", "")


class TestQueries:
    @pytest.mark.asyncio
    async def test_databases(self):
        store = CatalogStore("host=db1 user=monitor")
        pool, conn, cur = _fake_pool(rows=[("app",), ("billing",)])
        store._pool = pool

        assert await store.databases() == ["app", "billing"]
        cur.execute.assert_called_once_with(DATABASES_QUERY)
        pool.putconn.assert_called_once_with(conn)

    @pytest.mark.asyncio
    async def test_query_row(self):
        store = CatalogStore("host=db1 user=monitor")
        pool, conn, cur = _fake_pool(row=(160004,))
        store._pool = pool

        row = await store.query_row("SELECT current_setting(%s)::int", ("server_version_num",))
        assert row == (160004,)
        cur.execute.assert_called_once_with("SELECT current_setting(%s)::int", ("server_version_num",))

    @pytest.mark.asyncio
    async def test_connection_returned_on_error(self):
        store = CatalogStore("host=db1 user=monitor")
        pool, conn, cur = _fake_pool()
        cur.execute.side_effect = RuntimeError("boom")
        store._pool = pool

        with pytest.raises(RuntimeError):
            await store.databases()
        pool.putconn.assert_called_once_with(conn)

    def test_pool_created_lazily(self):
        with patch("pgdiscovery.store.ThreadedConnectionPool") as pool_cls:
            store = CatalogStore("host=db1 user=monitor dbname=postgres")
            pool_cls.assert_not_called()
            store._ensure_pool()
            store._ensure_pool()
            pool_cls.assert_called_once_with(1, 2, host="db1", user="monitor", dbname="postgres")
            store.close()
            pool_cls.return_value.closeall.assert_called_once()
