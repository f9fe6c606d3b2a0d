"""Register an expert's cron and webhook triggers with the host.

There is one :class:`TriggerRegistrar` interface and two strategies. The
strategy is chosen once at startup by :func:`select_registrar`:

- :class:`SchedulerApiRegistrar` when the host object exposes a scheduler API
  (callable ``add_cron_job`` and ``remove_cron_job``). Cron jobs are added
  through that API.
- :class:`HostConfigRegistrar` otherwise. Cron jobs are written into the host
  configuration document under ``cron.jobs.<id>``; the host picks them up on
  restart.

Both strategies handle webhooks the same way, by patching the host config:
the trigger's preset is appended to ``hooks.presets`` and ``hooks.enabled``
is switched on, but only when ``hooks.token`` is set. Webhook routing itself
is not registered, but webhook trigger ids are recorded so that a
``hooks.mappings`` entry routed to one is dropped on re-activation.

Registered cron and webhook ids are kept per expert in
``trigger-registrations.json`` so that re-activating an expert first removes
what it registered last time.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from expert_runtime.fileio import write_atomic
from expert_runtime.host import HostConfig
from expert_runtime.spec.manifest import ExpertManifest, ExpertTrigger

logger = logging.getLogger(__name__)


class ExpertRegistrations(BaseModel):
    cron: list[str] = Field(default_factory=list)
    webhook: list[str] = Field(default_factory=list)


class RegistrationState(BaseModel):
    experts: dict[str, ExpertRegistrations] = Field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RegistrationEntry:
    section: str
    key: str
    value: Any
    description: str


@dataclass
class RegistrationResult:
    applied: list[RegistrationEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    needs_restart: bool = False


class RegistrationStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def _load_unlocked(self) -> RegistrationState:
        if not self.path.exists():
            return RegistrationState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Trigger registration record is corrupt", extra={"path": str(self.path)})
            return RegistrationState()
        return RegistrationState.model_validate(raw if isinstance(raw, dict) else {})

    def _save_unlocked(self, state: RegistrationState) -> None:
        write_atomic(self.path, json.dumps(state.model_dump(mode="json"), indent=2) + "\n")

    async def load(self) -> RegistrationState:
        return await asyncio.to_thread(self._load_unlocked)

    async def save(self, state: RegistrationState) -> None:
        await asyncio.to_thread(self._save_unlocked, state)


def trigger_id(expert_name: str, trigger_name: str) -> str:
    return f"{expert_name}:{trigger_name}"


def cron_job(manifest: ExpertManifest, trigger: ExpertTrigger) -> dict[str, Any]:
    return {
        "id": trigger_id(manifest.name or "", trigger.name),
        "schedule": {"kind": "cron", "expr": trigger.expr, "tz": trigger.tz or "UTC"},
        "task": f"Run expert process: {trigger.process}",
        "sessionTarget": "main" if trigger.session == "main" else "isolated",
        "payload": {
            "kind": "systemEvent",
            "expert": manifest.name,
            "trigger": trigger.name,
            "process": trigger.process,
        },
        "delivery": {"mode": "announce"},
    }


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class TriggerRegistrar(abc.ABC):
    """Common registration flow; subclasses decide where cron jobs go."""

    strategy: str = "abstract"

    def __init__(self, store: RegistrationStore, host: HostConfig) -> None:
        self.store = store
        self.host = host
        self._lock = asyncio.Lock()
        self._host_dirty = False

    @abc.abstractmethod
    async def _add_cron(
        self, job: dict[str, Any], result: RegistrationResult
    ) -> bool:
        """Register one cron job. Returns True when it should be recorded."""

    @abc.abstractmethod
    async def _remove_cron(self, job_id: str) -> None:
        raise NotImplementedError

    async def state(self) -> RegistrationState:
        return await self.store.load()

    async def register_for_manifest(self, manifest: ExpertManifest) -> RegistrationResult:
        name = manifest.name or ""
        result = RegistrationResult()
        record = ExpertRegistrations()

        async with self._lock:
            self._host_dirty = False
            state = await self.store.load()
            previous = state.experts.get(name)
            if previous is not None:
                await self._remove_previous(previous)

            for trigger in manifest.triggers:
                tid = trigger_id(name, trigger.name)
                if trigger.type == "cron" and trigger.expr:
                    if await self._add_cron(cron_job(manifest, trigger), result):
                        record.cron.append(tid)
                elif trigger.type == "webhook":
                    self._register_webhook(tid, trigger, result)
                    record.webhook.append(tid)

            if self._host_dirty:
                result.needs_restart = True
                if self.host.source is None:
                    result.warnings.append(
                        "Host configuration has no backing file; trigger changes were not persisted."
                    )
                else:
                    await asyncio.to_thread(self.host.save)

            state.experts[name] = record
            await self.store.save(state)

        for warning in result.warnings:
            logger.warning(warning, extra={"expert": name, "strategy": self.strategy})
        logger.info(
            "Triggers registered",
            extra={
                "expert": name,
                "strategy": self.strategy,
                "cron": len(record.cron),
                "webhook": len(record.webhook),
            },
        )
        return result

    async def _remove_previous(self, previous: ExpertRegistrations) -> None:
        for job_id in previous.cron:
            await self._remove_cron(job_id)
        for hook_id in previous.webhook:
            self._remove_hook_mapping(hook_id)

    def _remove_hook_mapping(self, hook_id: str) -> None:
        """Drop a ``hooks.mappings`` entry routed to a trigger, list or mapping form."""

        mappings = self.host.get("hooks.mappings")
        if isinstance(mappings, list):
            kept = [m for m in mappings if not (isinstance(m, dict) and m.get("id") == hook_id)]
            if len(kept) != len(mappings):
                self.host.set("hooks.mappings", kept)
                self._host_dirty = True
        elif isinstance(mappings, dict) and hook_id in mappings:
            del mappings[hook_id]
            self._host_dirty = True

    def _register_webhook(self, tid: str, trigger: ExpertTrigger, result: RegistrationResult) -> None:
        if trigger.preset:
            presets = self.host.strings("hooks.presets")
            if trigger.preset not in presets:
                presets.append(trigger.preset)
                self.host.set("hooks.presets", presets)
                self._host_dirty = True
                result.applied.append(
                    RegistrationEntry(
                        section="hooks",
                        key="presets",
                        value=list(presets),
                        description=f"enabled preset '{trigger.preset}' for webhook source",
                    )
                )

        has_token = bool(self.host.text("hooks.token").strip())
        if has_token and not self.host.flag("hooks.enabled"):
            self.host.set("hooks.enabled", True)
            self._host_dirty = True
            result.applied.append(
                RegistrationEntry(
                    section="hooks",
                    key="enabled",
                    value=True,
                    description="enabled for webhook trigger support",
                )
            )
        if not has_token:
            result.warnings.append(
                f"Webhook trigger '{tid}' not auto-enabled: set hooks.token before enabling hooks."
            )
        result.warnings.append(
            f"Webhook trigger '{tid}' not auto-registered: route it to the runtime's webhook ingress."
        )


class SchedulerApiRegistrar(TriggerRegistrar):
    strategy = "scheduler-api"

    def __init__(self, store: RegistrationStore, host: HostConfig, scheduler: Any) -> None:
        super().__init__(store, host)
        self.scheduler = scheduler

    async def _add_cron(self, job: dict[str, Any], result: RegistrationResult) -> bool:
        try:
            await _maybe_await(self.scheduler.add_cron_job(job))
        except Exception as e:
            # A host rejecting one job must not block the others.
            result.warnings.append(f"Failed to register cron trigger {job['id']} via scheduler: {e}")
            return False
        schedule = job["schedule"]
        result.applied.append(
            RegistrationEntry(
                section="cron",
                key=job["id"],
                value=job,
                description=(
                    f"registered via scheduler: {schedule['expr']} {schedule['tz']} "
                    f"-> {job['payload']['process']}"
                ),
            )
        )
        return True

    async def _remove_cron(self, job_id: str) -> None:
        try:
            await _maybe_await(self.scheduler.remove_cron_job(job_id))
        except Exception as e:
            logger.warning(
                "Failed to remove prior cron trigger", extra={"job_id": job_id, "error": str(e)}
            )


class HostConfigRegistrar(TriggerRegistrar):
    strategy = "host-config"

    async def _add_cron(self, job: dict[str, Any], result: RegistrationResult) -> bool:
        jobs = self.host.get("cron.jobs")
        if not isinstance(jobs, dict):
            jobs = {}
        jobs[job["id"]] = job
        self.host.set("cron.jobs", jobs)
        self._host_dirty = True
        result.applied.append(
            RegistrationEntry(
                section="cron",
                key=job["id"],
                value=job,
                description=f"written to host config: {job['schedule']['expr']} -> {job['payload']['process']}",
            )
        )
        return True

    async def _remove_cron(self, job_id: str) -> None:
        jobs = self.host.get("cron.jobs")
        if isinstance(jobs, dict) and job_id in jobs:
            del jobs[job_id]
            self._host_dirty = True


def has_scheduler_api(host_api: Any) -> bool:
    return host_api is not None and all(
        callable(getattr(host_api, attr, None)) for attr in ("add_cron_job", "remove_cron_job")
    )


def select_registrar(
    store: RegistrationStore, host: HostConfig, host_api: Any = None
) -> TriggerRegistrar:
    if has_scheduler_api(host_api):
        return SchedulerApiRegistrar(store, host, host_api)
    return HostConfigRegistrar(store, host)
