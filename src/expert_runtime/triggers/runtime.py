from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from expert_runtime.errors import TriggerConfigError
from expert_runtime.runtime.logging import log_context
from expert_runtime.spec.manifest import ExpertManifest, ExpertTrigger
from expert_runtime.triggers.concurrency import PARALLEL, ConcurrencyQueue
from expert_runtime.triggers.dedupe import DedupeStore, dedupe_key
from expert_runtime.triggers.events import TriggerEvent, get_by_path, scalar_key

logger = logging.getLogger(__name__)

ProcessInvoker = Callable[[ExpertManifest, ExpertTrigger, dict[str, Any]], Awaitable[Any]]


def check_activation(manifest: ExpertManifest) -> None:
    """Raise :class:`TriggerConfigError` for triggers that cannot be registered."""

    for trigger in manifest.triggers:
        if trigger.type == "cron" and not trigger.expr:
            raise TriggerConfigError(f"Trigger '{trigger.name}' is cron but expr is missing")
        if trigger.type == "webhook" and not trigger.preset and not trigger.requires_tool:
            raise TriggerConfigError(f"Trigger '{trigger.name}' must define preset or requires_tool")


def dispatch_mode(manifest: ExpertManifest, trigger: ExpertTrigger) -> str:
    return trigger.concurrency or manifest.concurrency.default or PARALLEL


def dispatch_key(manifest: ExpertManifest, trigger: ExpertTrigger, payload: dict[str, Any]) -> str | None:
    key_path = trigger.concurrency_key or manifest.concurrency.key
    if not key_path:
        return None
    return scalar_key(get_by_path(payload, key_path))


class TriggerRuntime:
    """Deduplicate inbound trigger events and dispatch them through named queues."""

    def __init__(
        self,
        *,
        dedupe: DedupeStore,
        invoke: ProcessInvoker,
        queue: ConcurrencyQueue | None = None,
    ) -> None:
        self.dedupe = dedupe
        self.queue = queue or ConcurrencyQueue()
        self._invoke = invoke

    def activate_manifest(self, manifest: ExpertManifest) -> None:
        check_activation(manifest)

    async def load_persisted_dedupe(self) -> int:
        return await self.dedupe.load()

    async def cleanup_dedupe(self) -> int:
        return await self.dedupe.sweep()

    async def on_trigger_event(self, manifest: ExpertManifest, event: TriggerEvent) -> bool:
        """Handle one event.

        Returns False when the event was dropped as a duplicate; otherwise
        waits for the process invocation (queued per the trigger's mode) and
        returns True. Invocation errors propagate to the caller.
        """

        trigger = manifest.trigger(event.trigger_name)
        if trigger is None:
            raise TriggerConfigError(
                f"Trigger '{event.trigger_name}' is not declared by expert '{manifest.name}'"
            )

        if trigger.dedupe_key:
            value = scalar_key(get_by_path(event.payload, trigger.dedupe_key))
            if value is not None:
                key = dedupe_key(manifest.name or "", trigger.name, value)
                if not await self.dedupe.check_and_record(key):
                    logger.info(
                        "Duplicate trigger event dropped",
                        extra={"expert": manifest.name, "trigger": trigger.name, "dedupe_key": key},
                    )
                    return False

        mode = dispatch_mode(manifest, trigger)
        key = dispatch_key(manifest, trigger, event.payload)
        logger.info(
            "Trigger event dispatched",
            extra={"expert": manifest.name, "trigger": trigger.name, "mode": mode, "key": key},
        )

        async def _task() -> Any:
            return await self._invoke(manifest, trigger, event.payload)

        with log_context(trigger=trigger.name):
            await self.queue.enqueue(mode, trigger.name, key, _task)
        return True
