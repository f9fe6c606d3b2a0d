"""Detect an approval-needed signal embedded in engine output.

The engine's output format is not fully under our control, so parsing is
two-tier:

1. Strict: any line that is a JSON object whose ``status`` (or ``event``)
   contains "approval" and which carries ``resumeToken``/``resume_token``/``token``.
2. Permissive fallback, used only when no line matched strictly: a
   ``resumeToken`` key followed by a token-shaped value anywhere in the text,
   plus optional ``operation``, ``tier`` and ``reason`` values found the same
   way. A bare ``token`` key counts only when the text also mentions
   "approval", so ordinary output such as ``token budget: 1200`` never pauses.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

_TOKEN_KEYS = ("resumeToken", "resume_token", "token")

_SEP = r"[\"'\s:=-]+"
_RESUME_TOKEN_RE = re.compile(rf"resume_?token{_SEP}([A-Za-z0-9._-]+)", re.IGNORECASE)
_TOKEN_RE = re.compile(rf"token{_SEP}([A-Za-z0-9._-]+)", re.IGNORECASE)
_APPROVAL_RE = re.compile(r"approval", re.IGNORECASE)
_OPERATION_RE = re.compile(rf"operation{_SEP}([A-Za-z0-9._-]+)", re.IGNORECASE)
_TIER_RE = re.compile(rf"tier{_SEP}(confirm|manual)", re.IGNORECASE)
_REASON_RE = re.compile(rf"reason{_SEP}(.+)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ApprovalSignal:
    resume_token: str
    operation: str | None = None
    reason: str | None = None
    tier: str = "confirm"


def _tier(value: object) -> str:
    return "manual" if isinstance(value, str) and value.lower() == "manual" else "confirm"


def _parse_json_line(line: str) -> ApprovalSignal | None:
    stripped = line.strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        return None
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    status = parsed.get("status", parsed.get("event"))
    if "approval" not in str(status or ""):
        return None
    token = next((parsed[k] for k in _TOKEN_KEYS if isinstance(parsed.get(k), str)), None)
    if token is None:
        return None
    operation = parsed.get("operation")
    reason = parsed.get("reason")
    return ApprovalSignal(
        resume_token=token,
        operation=operation if isinstance(operation, str) else None,
        reason=reason if isinstance(reason, str) else None,
        tier=_tier(parsed.get("tier")),
    )


def _parse_permissive(output: str) -> ApprovalSignal | None:
    token_match = _RESUME_TOKEN_RE.search(output)
    if token_match is None and _APPROVAL_RE.search(output):
        token_match = _TOKEN_RE.search(output)
    if token_match is None:
        return None
    operation = _OPERATION_RE.search(output)
    tier = _TIER_RE.search(output)
    reason = _REASON_RE.search(output)
    return ApprovalSignal(
        resume_token=token_match.group(1),
        operation=operation.group(1) if operation else None,
        reason=reason.group(1).strip().strip("\"'") if reason else None,
        tier=_tier(tier.group(1) if tier else None),
    )


def parse_approval_signal(output: str) -> ApprovalSignal | None:
    for line in output.splitlines():
        signal = _parse_json_line(line)
        if signal is not None:
            return signal
    return _parse_permissive(output)
