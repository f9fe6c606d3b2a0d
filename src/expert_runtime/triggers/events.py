from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    """An inbound firing of a declared trigger.

    Events are produced outside the runtime (scheduler, webhook ingress,
    channel messages) and only consumed here.
    """

    trigger_name: str
    payload: dict[str, Any] = field(default_factory=dict)
    source: str = "external"


def get_by_path(payload: dict[str, Any], dotted: str) -> Any:
    """Resolve ``a.b.c`` against nested mappings; None when any segment is missing."""

    current: Any = payload
    for part in dotted.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def scalar_key(value: Any) -> str | None:
    """String form of a str or number value; None for anything else."""

    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    return None
