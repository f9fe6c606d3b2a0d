"""Runtime facade, configuration and the outer surfaces built on it."""

from __future__ import annotations

__all__ = ["ExpertRuntime", "HostEventBridge", "RuntimeSettings"]

from expert_runtime.runtime.config import RuntimeSettings
from expert_runtime.runtime.events import HostEventBridge
from expert_runtime.runtime.service import ExpertRuntime
