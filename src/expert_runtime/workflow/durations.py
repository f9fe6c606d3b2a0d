from __future__ import annotations

import re

_DURATION_RE = re.compile(r"^(\d+)(ms|s|m|h)$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | None) -> float:
    """Parse `500ms`, `30s`, `5m` or `2h` into seconds.

    Anything else (including an unknown unit) is zero.
    """

    if not value:
        return 0.0
    match = _DURATION_RE.match(value.strip())
    if match is None:
        return 0.0
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]


def backoff_delay(strategy: str, base: float, attempt: int) -> float:
    """Delay before retrying after failed `attempt` (1-based)."""

    if strategy == "fixed":
        return base
    return base * 2 ** (attempt - 1)
