"""Host event-bus adapter.

The bridge is constructed with the runtime it routes to; host callbacks are
bound methods of a bridge instance, never lookups of a global runtime.

Event shapes consumed (all optional, missing values default):

- message received: ``{"context": {"from", "content", "channelId"}}``
- before prompt build: ``{"context": {"sessionKey": "...expert:<name>...",
  "prependContext": [...]}}``; the expert's system prompt is appended to
  ``prependContext``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from expert_runtime.errors import ExpertNotFound
from expert_runtime.runtime.service import ExpertRuntime

logger = logging.getLogger(__name__)

_SESSION_EXPERT_RE = re.compile(r"expert:([A-Za-z0-9_-]+)")


def _context(event: Any) -> dict[str, Any]:
    if isinstance(event, dict) and isinstance(event.get("context"), dict):
        return event["context"]
    return {}


def normalize_message_payload(event: Any) -> dict[str, Any]:
    ctx = _context(event)
    return {
        "sender_id": ctx.get("from") or "unknown",
        "message_text": ctx.get("content") or "",
        "channel_name": ctx.get("channelId") or "unknown",
    }


def expert_from_session_key(event: Any) -> str | None:
    key = _context(event).get("sessionKey")
    if not isinstance(key, str):
        return None
    match = _SESSION_EXPERT_RE.search(key)
    return match.group(1) if match else None


class HostEventBridge:
    def __init__(self, runtime: ExpertRuntime) -> None:
        self.runtime = runtime

    async def on_gateway_startup(self, event: Any = None) -> None:
        await self.runtime.boot()
        await self.runtime.on_startup()
        self.runtime.start_background()

    async def on_message_received(self, event: Any) -> int:
        return await self.runtime.dispatch_channel_message(normalize_message_payload(event))

    async def before_prompt_build(self, event: Any) -> bool:
        """Append the target expert's system prompt. Returns True when appended."""

        expert = expert_from_session_key(event)
        if expert is None or not isinstance(event, dict) or "context" not in event:
            return False
        try:
            prompt = await self.runtime.system_prompt(expert)
        except ExpertNotFound:
            logger.warning("Prompt requested for unknown expert", extra={"expert": expert})
            return False
        ctx = event["context"]
        ctx["prependContext"] = [*(ctx.get("prependContext") or []), prompt]
        return True
