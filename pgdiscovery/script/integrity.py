"""Content hash checks for discovery scripts.

The first run of a script is always allowed; a hash missing from the
trusted list only produces a warning. Every later run in the same process
must see the same content, otherwise execution is blocked.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from pathlib import Path

from pgdiscovery.errors import ScriptIntegrityError

logger = logging.getLogger(__name__)

# SHA256 hex digests of pre-approved scripts, e.g.
# "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
TRUSTED_SCRIPT_HASHES: set[str] = set()

_hash_cache: dict[str, str] = {}
_hash_lock = threading.Lock()


def file_sha256(path: str | Path) -> str:
    """Return the hex SHA256 digest of the file at *path*."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def validate_script_hash(script_path: str) -> str:
    """Verify *script_path* has not changed since its first use.

    Returns:
        The current content hash.

    Raises:
        ScriptIntegrityError: if the file cannot be read or its hash changed.
    """
    try:
        current = file_sha256(script_path)
    except OSError as exc:
        raise ScriptIntegrityError(f"failed to read script file {script_path}: {exc}") from exc

    with _hash_lock:
        cached = _hash_cache.get(script_path)
    if cached is not None and cached != current:
        logger.warning(
            "Script hash changed for %s. Previous: %s..., Current: %s... Execution blocked.",
            script_path,
            cached[:16],
            current[:16],
        )
        raise ScriptIntegrityError(f"script hash changed, execution blocked: {script_path}")

    if current in TRUSTED_SCRIPT_HASHES:
        logger.debug("Script hash verified for %s: %s...", script_path, current[:16])
    else:
        logger.warning(
            "Untrusted script hash for %s: %s. Script will be executed but consider "
            "adding this hash to the trusted list.",
            script_path,
            current,
        )

    with _hash_lock:
        _hash_cache[script_path] = current
    return current


def forget_script_hash(script_path: str | None = None) -> None:
    """Drop cached hashes (one path, or all when *script_path* is None)."""
    with _hash_lock:
        if script_path is None:
            _hash_cache.clear()
        else:
            _hash_cache.pop(script_path, None)
