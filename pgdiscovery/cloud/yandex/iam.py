"""IAM token source for the cloud API.

Signs a short-lived PS256 JWT with the service account key and exchanges it
for an IAM token, renewing the token well ahead of its expiry.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import datetime, timedelta, timezone

import httpx
import jwt

from pgdiscovery.cloud.yandex.key import AuthorizedKey
from pgdiscovery.errors import CloudAPIError, CloudAuthError

logger = logging.getLogger(__name__)

IAM_TOKEN_URL = "https://iam.api.cloud.yandex.net/iam/v1/tokens"
RENEW_AHEAD = timedelta(minutes=30)
JWT_LIFETIME_SECONDS = 3600

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, allowing nanosecond precision."""
    text = value.strip().replace("Z", "+00:00").replace("z", "+00:00")
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class IAMToken:
    """Caches an IAM token and renews it on demand."""

    def __init__(
        self,
        key: AuthorizedKey,
        client: httpx.AsyncClient | None = None,
        token_url: str = IAM_TOKEN_URL,
    ) -> None:
        self.key = key
        self.token_url = token_url
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._token = ""
        self._expires_at: datetime | None = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Return a currently valid bearer token."""
        async with self._lock:
            if self.is_expired():
                await self._renew()
            return self._token

    def is_expired(self) -> bool:
        if not self._token or self._expires_at is None:
            return True
        return self._expires_at - RENEW_AHEAD <= datetime.now(timezone.utc)

    def make_jwt(self) -> str:
        now = int(time.time())
        claims = {
            "iss": self.key.service_account_id,
            "aud": self.token_url,
            "iat": now,
            "nbf": now,
            "exp": now + JWT_LIFETIME_SECONDS,
        }
        return jwt.encode(claims, self.key.private_key, algorithm="PS256", headers={"kid": self.key.id})

    async def _renew(self) -> None:
        logger.debug("[SD] Renewing IAM token")
        try:
            encoded = self.make_jwt()
        except (jwt.PyJWTError, ValueError) as exc:
            raise CloudAuthError(f"cannot sign JWT with the authorized key: {exc}") from exc

        try:
            response = await self._client.post(self.token_url, json={"jwt": encoded})
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            logger.error("[SD] IAM token renew error %s", exc)
            raise CloudAPIError(f"Cannot reach IAM at {self.token_url}: {exc}") from exc

        if response.status_code in (401, 403):
            raise CloudAuthError(f"IAM returned {response.status_code}, check the authorized key")
        if response.status_code != 200:
            logger.error("[SD] IAM token renew returned unexpected status code: %d", response.status_code)
            raise CloudAPIError(f"unexpected status code: {response.status_code}")

        data = response.json()
        try:
            self._token = data["iamToken"]
            self._expires_at = parse_rfc3339(data["expiresAt"])
        except (KeyError, TypeError, ValueError) as exc:
            raise CloudAPIError(f"malformed IAM token response: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
