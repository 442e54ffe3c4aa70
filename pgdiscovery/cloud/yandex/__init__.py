"""Yandex Cloud managed PostgreSQL access: authorized keys, IAM tokens, REST client."""

from __future__ import annotations

from pgdiscovery.cloud.yandex.client import Cluster, Database, Host, MDBClient
from pgdiscovery.cloud.yandex.iam import IAMToken
from pgdiscovery.cloud.yandex.key import AuthorizedKey, load_authorized_key

__all__ = [
    "AuthorizedKey",
    "Cluster",
    "Database",
    "Host",
    "IAMToken",
    "MDBClient",
    "load_authorized_key",
]
