"""Decoder for the plain text output of discovery scripts.

Scripts print a header line starting with ``#`` that names the columns,
followed by whitespace separated rows. A ``-`` cell means "empty". A new
header line replaces the column mapping for the rows after it::

    # service-id dsn password-from-env password
    main_16 postgres://exporter@db-host:7432/postgres PGPASSWORD -
    replica_16 postgres://exporter@db-replica:7432/postgres - secret123
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, fields

from pgdiscovery.errors import ResponseDecodeError, ResponseValidationError
from pgdiscovery.validators import is_env_name

logger = logging.getLogger(__name__)

EMPTY_CELL = "-"


@dataclass
class ScriptResponse:
    """One service record produced by a discovery script."""

    service_id: str = ""
    dsn: str = ""
    database: str = ""
    host: str = ""
    port: int = 0
    user: str = ""
    user_from_env: str = ""
    password: str = ""
    password_from_env: str = ""

    def all_fields_empty(self) -> bool:
        return all(not getattr(self, f.name) for f in fields(self))

    def validate(self) -> None:
        """Check required fields and formats.

        Raises:
            ResponseValidationError: describing every failed check.
        """
        problems: list[str] = []
        if not self.service_id:
            problems.append("service-id is required")
        if not 0 <= self.port <= 65535:
            problems.append(f"port {self.port} out of range")
        if self.user_from_env and not is_env_name(self.user_from_env):
            problems.append(f"user-from-env {self.user_from_env!r} is not a valid variable name")
        if self.password_from_env and not is_env_name(self.password_from_env):
            problems.append(
                f"password-from-env {self.password_from_env!r} is not a valid variable name"
            )
        if problems:
            raise ResponseValidationError("; ".join(problems))


def _to_int(value: str) -> int:
    if value == "":
        return 0
    try:
        return int(value)
    except ValueError:
        logger.error("failed to parse int value: %s", value)
        return 0


# column tag -> (attribute, converter)
RESPONSE_COLUMNS: dict[str, tuple[str, Callable[[str], object]]] = {
    "service-id": ("service_id", str),
    "dsn": ("dsn", str),
    "database": ("database", str),
    "host": ("host", str),
    "port": ("port", _to_int),
    "user": ("user", str),
    "user-from-env": ("user_from_env", str),
    "password": ("password", str),
    "password-from-env": ("password_from_env", str),
}


def unmarshal_script_response(data: str) -> list[ScriptResponse]:
    """Decode script output into records, preserving line order.

    Rows before the first header are ignored, as are blank lines.

    Raises:
        ResponseDecodeError: if a row has fewer cells than the header has columns.
    """
    positions: dict[str, int] = {}
    results: list[ScriptResponse] = []

    for line in data.strip().split("\n"):
        if line.startswith("#"):
            positions = {tag: i for i, tag in enumerate(line.strip()[1:].split())}
            continue
        if not positions or not line.strip():
            continue

        cells = line.split()
        if len(cells) < len(positions):
            raise ResponseDecodeError(f"line has fewer fields than header: {line}")

        record = ScriptResponse()
        for tag, pos in positions.items():
            column = RESPONSE_COLUMNS.get(tag)
            if column is None or pos >= len(cells):
                continue
            attr, convert = column
            value = cells[pos]
            if value == EMPTY_CELL:
                value = ""
            setattr(record, attr, convert(value))
        results.append(record)

    return results
