"""Helpers for script based discovery."""

from __future__ import annotations

from pgdiscovery.script.integrity import TRUSTED_SCRIPT_HASHES, validate_script_hash
from pgdiscovery.script.response import ScriptResponse, unmarshal_script_response

__all__ = [
    "ScriptResponse",
    "TRUSTED_SCRIPT_HASHES",
    "unmarshal_script_response",
    "validate_script_hash",
]
