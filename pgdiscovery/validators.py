"""Field validators for discovery configuration and script records.

- environment variable names
- regular file paths
- TTL durations (``"30s"``, ``"1m30s"`` or integer seconds)
"""

from __future__ import annotations

import logging
import os
import re
import stat

logger = logging.getLogger(__name__)

_ENV_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def is_env_name(name: str) -> bool:
    """True for names made of letters, digits and ``_`` not starting with a digit."""
    return bool(name) and _ENV_NAME_RE.fullmatch(name) is not None


def is_regular_file(path: str) -> bool:
    """True if *path* is a regular file (symlinks are not followed)."""
    if not path:
        return False
    try:
        st = os.lstat(os.path.normpath(path))
    except OSError as exc:
        logger.error("failed to lstat file: %s %s", path, exc)
        return False
    return stat.S_ISREG(st.st_mode)


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string into seconds.

    Raises:
        ValueError: if *value* is not a valid duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    pos = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return sign * total


def parse_ttl(value: str | int) -> float:
    """Parse a positive TTL given as a duration string or integer seconds.

    Raises:
        ValueError: if the value is malformed or not positive.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid ttl {value!r}")
    if isinstance(value, int):
        seconds = float(value)
    else:
        try:
            seconds = parse_duration(value)
        except ValueError:
            try:
                seconds = float(int(value))
            except ValueError:
                raise ValueError(f"invalid ttl {value!r}") from None
    if seconds <= 0:
        raise ValueError(f"ttl must be positive, got {value!r}")
    return seconds
