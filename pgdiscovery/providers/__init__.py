"""Provider factory for pgdiscovery.

Usage::

    from pgdiscovery.providers import instantiate
    providers = instantiate({
        "local": {"type": "postgres", "config": {"conninfo": "postgres://..."}},
        "inventory": {"type": "script", "config": {"script": "/opt/sd.sh", ...}},
    })
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pgdiscovery.errors import DiscoveryConfigError
from pgdiscovery.service import POSTGRES, SCRIPT, YANDEX_MDB

from .base import Discovery
from .postgres import PostgresDiscovery
from .script import ScriptDiscovery
from .yandex import YandexDiscovery

logger = logging.getLogger(__name__)

__all__ = [
    "Discovery",
    "PostgresDiscovery",
    "ScriptDiscovery",
    "YandexDiscovery",
    "get_provider",
    "instantiate",
]

_PROVIDERS: dict[str, type[Discovery]] = {
    YANDEX_MDB: YandexDiscovery,
    POSTGRES: PostgresDiscovery,
    SCRIPT: ScriptDiscovery,
}


def get_provider(provider_type: str, provider_id: str) -> Discovery:
    """Return an uninitialised provider of *provider_type*."""
    cls = _PROVIDERS.get(provider_type)
    if cls is None:
        raise DiscoveryConfigError(
            f"Unknown service discovery type '{provider_type}'. "
            f"Choose from: {list(_PROVIDERS)}"
        )
    return cls(provider_id)


def instantiate(discovery_config: Mapping[str, Any]) -> dict[str, Discovery]:
    """Build and initialise one provider per ``{id: {type, config}}`` entry.

    Raises:
        DiscoveryConfigError: on an unknown type or an invalid provider config.
    """
    logger.debug("[SD] Initializing discovery services...")
    if not isinstance(discovery_config, Mapping):
        raise DiscoveryConfigError("discovery config must be a mapping of provider ids")

    providers: dict[str, Discovery] = {}
    for provider_id, entry in discovery_config.items():
        if not isinstance(entry, Mapping) or "type" not in entry:
            raise DiscoveryConfigError(f"[SD] Discovery '{provider_id}' has no type")
        logger.debug("[SD] Found service discovery type '%s'", entry["type"])
        provider = get_provider(entry["type"], provider_id)
        try:
            provider.init(entry.get("config"))
        except DiscoveryConfigError as exc:
            logger.error("[SD] Failed to initialize discovery service '%s', error: %s", provider_id, exc)
            raise
        providers[provider_id] = provider
    return providers
