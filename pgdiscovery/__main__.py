"""Run discovery providers from a config file and print what they find.

Usage::

    python -m pgdiscovery --config discovery.json [--once] [--log-level DEBUG]

The config file maps provider ids to ``{"type": ..., "config": ...}``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pgdiscovery.errors import DiscoveryConfigError
from pgdiscovery.providers import Discovery, instantiate
from pgdiscovery.service import Service

logger = logging.getLogger("pgdiscovery")

SUBSCRIBER_ID = "cli"


def _printer(provider_id: str):
    def on_add(services: dict[str, Service]) -> None:
        for service_id, svc in sorted(services.items()):
            print(f"+ [{provider_id}] {service_id} {svc.dsn} {svc.const_labels} {svc.target_labels}")

    def on_remove(service_ids: list[str]) -> None:
        for service_id in sorted(service_ids):
            print(f"- [{provider_id}] {service_id}")

    return on_add, on_remove


async def _drain(errors: asyncio.Queue) -> None:
    while True:
        exc = await errors.get()
        logger.warning("discovery error: %s", exc)


async def run(providers: dict[str, Discovery], once: bool = False) -> None:
    """Subscribe the printer to every provider and poll until stopped.

    With *once* each provider runs a single tick and returns.
    """
    errors: asyncio.Queue = asyncio.Queue()

    for provider_id, provider in providers.items():
        on_add, on_remove = _printer(provider_id)
        await provider.subscribe(SUBSCRIBER_ID, on_add, on_remove)

    stop_events = {}
    for provider_id in providers:
        stop_events[provider_id] = asyncio.Event()
        if once:
            stop_events[provider_id].set()

    drain = asyncio.create_task(_drain(errors))
    try:
        await asyncio.gather(
            *(provider.start(errors, stop_events[pid]) for pid, provider in providers.items())
        )
    finally:
        while not errors.empty():
            logger.warning("discovery error: %s", errors.get_nowait())
        drain.cancel()
        if not once:
            for provider in providers.values():
                await provider.unsubscribe(SUBSCRIBER_ID)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="python -m pgdiscovery",
        description="PostgreSQL service discovery runner",
    )
    parser.add_argument("--config", metavar="PATH", required=True, help="Discovery config (JSON)")
    parser.add_argument("--once", action="store_true", help="Run a single discovery tick and exit")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    try:
        raw = json.loads(Path(args.config).read_text())
        providers = instantiate(raw)
    except (OSError, json.JSONDecodeError, DiscoveryConfigError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)

    try:
        asyncio.run(run(providers, once=args.once))
    except KeyboardInterrupt:
        print("\nDiscovery stopped.")
        sys.exit(1)


if __name__ == "__main__":
    main()
