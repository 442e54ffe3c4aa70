"""Service account authorized key file."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime

from pydantic import BaseModel, ValidationError, field_validator

from pgdiscovery.errors import DiscoveryConfigError

logger = logging.getLogger(__name__)


class AuthorizedKey(BaseModel):
    """Contents of the JSON key issued for a cloud service account."""

    id: str = ""
    service_account_id: str
    created_at: datetime
    key_algorithm: str
    public_key: str
    private_key: str

    @field_validator("service_account_id", "key_algorithm", "public_key", "private_key")
    @classmethod
    def _required(cls, v: str) -> str:
        if not v:
            raise ValueError("field is required")
        return v


def load_authorized_key(path: str) -> AuthorizedKey:
    """Read and validate an authorized key JSON file.

    Raises:
        DiscoveryConfigError: if the file is missing, not JSON or incomplete.
    """
    logger.debug("[SD] Loading authorized key from path '%s'", path)
    try:
        with open(os.path.normpath(path)) as f:
            data = json.load(f)
    except OSError as exc:
        logger.error("[SD] Failed to load authorized key, error: %s", exc)
        raise DiscoveryConfigError(f"cannot read authorized key {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        logger.error("[SD] Failed to parse authorized key, JSON parse error: %s", exc)
        raise DiscoveryConfigError(f"authorized key {path} is not valid JSON: {exc}") from exc

    try:
        return AuthorizedKey.model_validate(data)
    except ValidationError as exc:
        logger.error("[SD] Failed to validate authorized key, error: %s", exc)
        raise DiscoveryConfigError(f"invalid authorized key {path}: {exc}") from exc
