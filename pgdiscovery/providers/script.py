"""Script discovery provider.

Runs an operator supplied executable on every tick and turns its tabular
stdout into services. Configured environment variables are applied to the
process environment only for the duration of the run, under a module-level
lock, and restored afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import os
import weakref
from typing import Any

import psycopg2
from psycopg2.extensions import parse_dsn

from pgdiscovery.config import ScriptConfig, labels_to_dict, parse_config
from pgdiscovery.errors import (
    DiscoveryError,
    PollError,
    ResponseValidationError,
    ScriptExecutionError,
)
from pgdiscovery.providers.base import Discovery, report_error, wait_stopped
from pgdiscovery.script.integrity import validate_script_hash
from pgdiscovery.script.response import ScriptResponse, unmarshal_script_response
from pgdiscovery.service import SCRIPT, AddServiceFunc, RemoveServiceFunc, Service, Target
from pgdiscovery.sync import ServiceSet, Subscriber, subscribe, sync_subscribers, unsubscribe

logger = logging.getLogger(__name__)

# Environment variables are process global: one script run at a time.
# asyncio locks bind to a loop, so each running loop gets its own.
_env_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = (
    weakref.WeakKeyDictionary()
)


def _env_lock() -> asyncio.Lock:
    """Return the environment lock for the running event loop."""
    loop = asyncio.get_running_loop()
    lock = _env_locks.get(loop)
    if lock is None:
        lock = _env_locks[loop] = asyncio.Lock()
    return lock


def fill_service_dsn(svc: ScriptResponse) -> str:
    """Build the final connection string for a script record.

    Explicit ``host``/``port``/``user``/``password``/``database`` fields
    override what the record's own ``dsn`` carries. ``user-from-env`` and
    ``password-from-env`` are consulted only when the direct field is empty
    and the variable is set.

    Raises:
        DiscoveryError: if ``dsn`` is not a valid connection string.
    """
    if svc.dsn:
        try:
            params = parse_dsn(svc.dsn)
        except psycopg2.Error as exc:
            raise DiscoveryError(f"cannot parse dsn for '{svc.service_id}': {exc}") from exc
    else:
        params = {}

    host = params.get("host", "")
    try:
        port = int(params.get("port") or 0)
    except ValueError as exc:
        raise DiscoveryError(f"invalid port in dsn for '{svc.service_id}'") from exc
    user = params.get("user", "")
    password = params.get("password", "")
    database = params.get("dbname", "")

    if svc.host:
        host = svc.host
    if svc.port:
        port = svc.port
    if svc.database:
        database = svc.database

    if svc.user:
        user = svc.user
    elif svc.user_from_env and svc.user_from_env in os.environ:
        user = os.environ[svc.user_from_env]

    if svc.password:
        password = svc.password
    elif svc.password_from_env and svc.password_from_env in os.environ:
        password = os.environ[svc.password_from_env]

    credentials: list[str] = []
    if user:
        credentials.append(f"{user}:{password}" if password else user)
    if host:
        host_part = f"[{host}]" if ":" in host else host
        credentials.append(f"{host_part}:{port}" if port > 0 else host)

    return f"postgres://{'@'.join(credentials)}/{database}"


class ScriptDiscovery(Discovery):
    """Discovers services by running an external script."""

    def __init__(self, provider_id: str = SCRIPT) -> None:
        self.provider_id = provider_id
        self.config: ScriptConfig | None = None
        self.subscribers: dict[str, Subscriber] = {}
        self._engine = ServiceSet()
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------ #
    # Discovery interface
    # ------------------------------------------------------------------ #

    def init(self, config: Any) -> None:
        logger.debug("[Script:%s SD] Init discovery config...", self.provider_id)
        try:
            self.config = parse_config(ScriptConfig, config)
        except DiscoveryError as exc:
            logger.error("[Script SD] Failed to init discovery config, error: %s", exc)
            raise

    async def start(
        self,
        errors: asyncio.Queue | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        config = self._require_config()
        if stop_event is not None:
            self._stop_event = stop_event
        interval = config.refresh_interval_seconds

        while True:
            try:
                await self.sync()
            except Exception as exc:
                logger.error("[Script:%s SD] Failed to sync, error: %s", self.provider_id, exc)
                report_error(errors, exc)

            if await wait_stopped(self._stop_event, interval):
                logger.debug("[Script:%s SD] Stopped.", self.provider_id)
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
        """Run the script once and push the resulting changes to subscribers."""
        services = await self.get_services()
        async with self._lock:
            self._engine.update(services)
            await sync_subscribers(self.subscribers, [self._engine], self._describe)

    async def get_services(self) -> dict[str, Target]:
        """Verify, run and decode the script.

        Records failing validation or DSN synthesis are logged and skipped.
        """
        config = self._require_config()
        validate_script_hash(config.script)

        async with _env_lock():
            saved = self._override_env()
            try:
                records = await self.get_script_response()
                services: dict[str, Target] = {}
                for n, svc in enumerate(records):
                    if svc.all_fields_empty():
                        continue
                    try:
                        svc.validate()
                    except ResponseValidationError as exc:
                        logger.error("[Script SD] Failed to validate svc config #%d, error: %s", n, exc)
                        continue
                    try:
                        dsn = fill_service_dsn(svc)
                    except DiscoveryError as exc:
                        logger.error("[Script SD] Failed to fill svc config #%d, error: %s", n, exc)
                        continue
                    services[svc.service_id] = Target(dsn=dsn, name=svc.service_id)
            finally:
                self._restore_env(saved)

        logger.debug("[Script:%s SD] Script returned %d service(s)", self.provider_id, len(services))
        return services

    async def get_script_response(self) -> list[ScriptResponse]:
        """Execute the script within the configured timeout and decode stdout."""
        config = self._require_config()
        timeout = config.execution_timeout_seconds
        try:
            proc = await asyncio.create_subprocess_exec(
                config.script,
                *config.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ScriptExecutionError(f"cannot execute {config.script}: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ScriptExecutionError(
                f"script {config.script} timed out after {timeout:g}s"
            ) from None
        finally:
            # Timeout or cancellation: the child must not outlive the tick.
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            raise ScriptExecutionError(
                f"exit_code: {proc.returncode} stderr: {stderr[:500]}",
                exit_code=proc.returncode,
                stderr=stderr,
            )
        if stderr:
            logger.debug("[Script SD] Command stderr output: %s", stderr)
        if config.debug:
            logger.debug("[Script SD] Command output: %s", stdout)

        return unmarshal_script_response(stdout)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _require_config(self) -> ScriptConfig:
        if self.config is None:
            raise PollError(f"script discovery '{self.provider_id}' is not initialised")
        return self.config

    def _describe(self, _engine_idx: int, service_id: str, target: Target) -> Service:
        config = self._require_config()
        const_labels = {"provider": SCRIPT, "provider_id": self.provider_id}
        const_labels.update(labels_to_dict(config.labels))
        return Service(
            service_id=service_id,
            dsn=target.dsn,
            const_labels=const_labels,
            target_labels=labels_to_dict(config.target_labels),
        )

    def _override_env(self) -> dict[str, str | None]:
        saved: dict[str, str | None] = {}
        for env in self._require_config().env:
            if env.name not in saved:
                saved[env.name] = os.environ.get(env.name)
            os.environ[env.name] = env.value
        return saved

    @staticmethod
    def _restore_env(saved: dict[str, str | None]) -> None:
        for name, value in saved.items():
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value
