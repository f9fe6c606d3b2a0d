"""Trigger dispatch: deduplication, concurrency queues and host registration."""

from expert_runtime.triggers.concurrency import ConcurrencyQueue
from expert_runtime.triggers.dedupe import DedupeStore, dedupe_key
from expert_runtime.triggers.events import TriggerEvent
from expert_runtime.triggers.registration import (
    HostConfigRegistrar,
    RegistrationStore,
    SchedulerApiRegistrar,
    TriggerRegistrar,
    select_registrar,
)
from expert_runtime.triggers.runtime import TriggerRuntime, check_activation

__all__ = [
    "ConcurrencyQueue",
    "DedupeStore",
    "HostConfigRegistrar",
    "RegistrationStore",
    "SchedulerApiRegistrar",
    "TriggerEvent",
    "TriggerRegistrar",
    "TriggerRuntime",
    "check_activation",
    "dedupe_key",
    "select_registrar",
]
