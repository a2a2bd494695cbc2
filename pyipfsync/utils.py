"""Utility functions for pyipfsync."""

import re

# =============================================================================
# Constants
# =============================================================================

# Suffixes of editor swap files and partial downloads
DEFAULT_IGNORE_SUFFIXES: list[str] = ["kate-swp", "swp", "part", "crdownload"]

# Time between IPNS drift checks (seconds)
DEFAULT_SYNC_INTERVAL: float = 10.0

# Timeout for short daemon calls like "version" and "files/mkdir" (seconds)
DEFAULT_TIMEOUT: float = 30.0

# Bad block recovery retries per file before giving up
DEFAULT_MAX_RECOVERY_ATTEMPTS: int = 3
DEFAULT_RECOVERY_BACKOFF: float = 1.0  # seconds


# =============================================================================
# Duration parsing
# =============================================================================

_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "sec": 1.0,
    "m": 60.0,
    "min": 60.0,
    "h": 3600.0,
    "hr": 3600.0,
    "d": 86400.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]*)")


def parse_duration(value: str | float | int) -> float:
    """Parse a human duration into seconds.

    Args:
        value: Duration such as "10s", "1m 30s", "1h" or "250ms". Bare
            numbers are taken as seconds.

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the value can't be parsed

    Examples:
        >>> parse_duration("10s")
        10.0
        >>> parse_duration("1m 30s")
        90.0
        >>> parse_duration("250ms")
        0.25
    """
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip().lower()
    if not text:
        raise ValueError("Empty duration")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if text[position : match.start()].strip(" ,"):
            raise ValueError(f"Invalid duration: {value!r}")
        number, unit = match.groups()
        unit = unit or "s"
        if unit not in _DURATION_UNITS:
            raise ValueError(f"Unknown duration unit {unit!r} in {value!r}")
        total += float(number) * _DURATION_UNITS[unit]
        position = match.end()

    if position == 0 or text[position:].strip(" ,"):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


# =============================================================================
# Path utilities
# =============================================================================


def parent_path(path: str) -> str:
    """Return the parent of a slash separated path ("" at top level).

    Examples:
        >>> parent_path("docs/a/b.txt")
        'docs/a'
    """
    return path.rsplit("/", 1)[0] if "/" in path else ""
