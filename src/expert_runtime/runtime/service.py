"""The expert runtime: one object owning every component.

CLI commands, REST endpoints and host event callbacks are thin wrappers over
the coroutines here. Manifests are loaded fresh for every operation; only the
set of active manifests (for channel dispatch) is kept in memory.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from expert_runtime.approvals import ApprovalRequest, ApprovalStore
from expert_runtime.bindings import (
    BindingFile,
    BindingStore,
    ToolBinding,
    validate_binding_reachability,
    validate_bindings,
)
from expert_runtime.bindings.wizard import build_binding_prompts
from expert_runtime.errors import (
    ActivationBlocked,
    ApprovalNotFound,
    BindingsInvalid,
    ExpertNotFound,
    ExpertRuntimeError,
)
from expert_runtime.host import HostConfig
from expert_runtime.learning import PACKAGE_SCOPE, LearningProposal, LearningService
from expert_runtime.runtime.background import BackgroundSweeper
from expert_runtime.runtime.config import RuntimeSettings
from expert_runtime.runtime.prompt import SYSTEM_PROMPT_FILENAME, assemble_system_prompt
from expert_runtime.runtime.registry import RegistryEntry, write_experts_registry
from expert_runtime.spec.manifest import (
    MANIFEST_FILENAME,
    ExpertManifest,
    ExpertTrigger,
    load_manifest,
)
from expert_runtime.spec.validator import ValidationResult, validate_manifest
from expert_runtime.state.lifecycle import initialize_state_templates, reset_session_state
from expert_runtime.triggers import (
    DedupeStore,
    RegistrationStore,
    TriggerEvent,
    TriggerRuntime,
    select_registrar,
)
from expert_runtime.triggers.registration import RegistrationResult
from expert_runtime.workflow.compiler import CompileResult, compile_expert, compiled_freshness
from expert_runtime.workflow.engine import SubprocessEngine, WorkflowEngine
from expert_runtime.workflow.executor import ProcessExecutor, RunOutcome

logger = logging.getLogger(__name__)

LEARNING_OPERATION = "learning.persist"
LLM_TASK_TOOL = "llm-task"
LLM_TASK_ENABLED = "plugins.entries.llm-task.enabled"

Notifier = Callable[[str], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ExpertRecord:
    name: str
    version: str
    description: str
    root_dir: Path


@dataclass(frozen=True, slots=True)
class ExpertSummary:
    name: str
    version: str
    status: str
    bound: int
    required: int
    triggers: int

    def render(self) -> str:
        return (
            f"- {self.name}@{self.version} status={self.status} "
            f"bound={self.bound}/{self.required} triggers={self.triggers}"
        )


@dataclass
class ActivationReport:
    expert: str
    compiled: list[CompileResult] = field(default_factory=list)
    registration: RegistrationResult = field(default_factory=RegistrationResult)
    prompt_path: Path | None = None

    def render(self) -> str:
        lines = [f"Activated {self.expert}."]
        lines.extend(f"compiled {c.process_name}: {c.step_count} steps" for c in self.compiled)
        lines.extend(f"{e.section}.{e.key}: {e.description}" for e in self.registration.applied)
        lines.extend(f"WARN {w}" for w in self.registration.warnings)
        if self.registration.needs_restart:
            lines.append("Host configuration changed; restart the host to apply it.")
        return "\n".join(lines)


def _has_manifest(path: Path) -> bool:
    return (path / MANIFEST_FILENAME).is_file()


def list_installed_experts(experts_dir: Path) -> list[ExpertRecord]:
    """Installed packages sorted by name. Packages whose manifest fails to load are skipped."""

    if not experts_dir.is_dir():
        return []
    records: list[ExpertRecord] = []
    for entry in experts_dir.iterdir():
        if not entry.is_dir() or not _has_manifest(entry):
            continue
        try:
            manifest = load_manifest(entry)
        except ExpertRuntimeError as e:
            logger.warning("Skipping unreadable expert", extra={"path": str(entry), "error": str(e)})
            continue
        records.append(
            ExpertRecord(
                name=manifest.name or entry.name,
                version=manifest.version or "",
                description=manifest.description or "",
                root_dir=entry,
            )
        )
    records.sort(key=lambda r: r.name)
    return records


class ExpertRuntime:
    """Facade over validation, compilation, dispatch, execution and approvals.

    Args:
        settings: Runtime settings; loaded from the environment when omitted.
        engine: Workflow engine adapter; a :class:`SubprocessEngine` running
            ``settings.engine_command`` by default.
        host_config: Host configuration document; loaded from
            ``settings.host_config_path`` by default.
        host_api: Optional host object. When it exposes a scheduler API, cron
            triggers are registered through it.
        notifier: Awaited with a message whenever an approval is required.
        clock: Time source for approvals and dedupe (seconds since the epoch).
        sleep: Backoff sleeper passed to the executor.
    """

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        *,
        engine: WorkflowEngine | None = None,
        host_config: HostConfig | None = None,
        host_api: Any = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or RuntimeSettings()
        s = self.settings

        self.host = host_config if host_config is not None else HostConfig.load(s.host_config_path)
        self.engine = engine or SubprocessEngine(s.engine_command)
        self.approvals = ApprovalStore(s.approvals_file, clock=clock)
        self.bindings = BindingStore(s.config_dir)
        self.learning = LearningService(s.learnings_dir)
        self.executor = ProcessExecutor(
            compiled_dir=s.compiled_dir,
            approvals=self.approvals,
            engine=self.engine,
            default_timeout=s.engine_timeout_seconds,
            on_approval_required=self._on_approval_required,
            on_direct_resolution=self._apply_direct_resolution,
            sleep=sleep,
        )
        self.triggers = TriggerRuntime(
            dedupe=DedupeStore(s.dedupe_state_file, s.dedupe_window_seconds, clock=clock),
            invoke=self._invoke_trigger,
        )
        self.registrar = select_registrar(RegistrationStore(s.registrations_file), self.host, host_api)
        self.sweeper = BackgroundSweeper()

        self._notifier = notifier
        self._active: dict[str, ExpertManifest] = {}

    # Lifecycle

    async def boot(self) -> None:
        def _mkdirs() -> None:
            for path in self.settings.runtime_dirs().values():
                path.mkdir(parents=True, exist_ok=True)

        await asyncio.to_thread(_mkdirs)
        loaded = await self.triggers.load_persisted_dedupe()
        logger.info(
            "Runtime booted",
            extra={
                "data_dir": str(self.settings.data_dir),
                "dedupe_entries": loaded,
                "registrar": self.registrar.strategy,
            },
        )

    def start_background(self) -> None:
        self.sweeper.start(
            "approval-timeouts", self.settings.approval_poll_seconds, self.process_approval_timeouts
        )
        self.sweeper.start("dedupe", self.settings.dedupe_sweep_seconds, self.triggers.cleanup_dedupe)

    async def shutdown(self) -> None:
        await self.sweeper.stop()

    async def on_startup(self) -> None:
        """Evict stale dedupe entries and mark every installed expert active."""

        await self.triggers.cleanup_dedupe()
        records = await asyncio.to_thread(list_installed_experts, self.settings.experts_dir)
        for record in records:
            manifest = await asyncio.to_thread(load_manifest, record.root_dir)
            self._active[manifest.name or record.name] = manifest

    @property
    def active_manifests(self) -> list[ExpertManifest]:
        return list(self._active.values())

    # Lookup

    def find_expert_dir(self, expert_name: str) -> Path:
        experts_dir = self.settings.experts_dir
        direct = experts_dir / expert_name
        if _has_manifest(direct):
            return direct
        for record in list_installed_experts(experts_dir):
            if record.name == expert_name:
                return record.root_dir
        raise ExpertNotFound(f"Expert '{expert_name}' not found under {experts_dir}")

    async def load_expert(self, expert_name: str) -> tuple[Path, ExpertManifest]:
        expert_dir = await asyncio.to_thread(self.find_expert_dir, expert_name)
        manifest = await asyncio.to_thread(load_manifest, expert_dir)
        return expert_dir, manifest

    def _manifest_name(self, manifest: ExpertManifest, expert_dir: Path) -> str:
        return manifest.name or expert_dir.name

    # Operations

    async def list_experts(self) -> list[ExpertSummary]:
        records = await asyncio.to_thread(list_installed_experts, self.settings.experts_dir)
        state = await self.registrar.state()
        summaries: list[ExpertSummary] = []
        for record in records:
            manifest = await asyncio.to_thread(load_manifest, record.root_dir)
            try:
                bindings = await self.bindings.read(record.name)
            except BindingsInvalid as e:
                logger.warning(
                    "Ignoring unreadable bindings", extra={"expert": record.name, "error": str(e)}
                )
                bindings = BindingFile()
            required = manifest.required_tools
            summaries.append(
                ExpertSummary(
                    name=record.name,
                    version=record.version,
                    status="active" if record.name in state.experts else "installed",
                    bound=sum(1 for tool in required if tool in bindings.tools),
                    required=len(required),
                    triggers=len(manifest.triggers),
                )
            )
        return summaries

    async def validate(self, expert_name: str) -> ValidationResult:
        """Manifest findings followed by binding and reachability findings."""

        expert_dir, manifest = await self.load_expert(expert_name)
        bindings = await self.bindings.read(self._manifest_name(manifest, expert_dir))
        return await asyncio.to_thread(self._validate_sync, expert_dir, manifest, bindings)

    def _validate_sync(
        self, expert_dir: Path, manifest: ExpertManifest, bindings: BindingFile
    ) -> ValidationResult:
        base = validate_manifest(expert_dir, manifest)
        return ValidationResult.from_findings(
            [
                *base.findings,
                *validate_bindings(manifest, bindings),
                *validate_binding_reachability(bindings, self.host),
            ]
        )

    async def bind(self, expert_name: str, tool: str, binding: ToolBinding) -> str:
        await self.bindings.upsert(expert_name, tool, binding)
        return f"Bound {tool} for {expert_name} to {binding.describe()}"

    async def binding_wizard(self, expert_name: str) -> str:
        expert_dir, manifest = await self.load_expert(expert_name)
        bindings = await self.bindings.read(self._manifest_name(manifest, expert_dir))
        prompts = build_binding_prompts(manifest, bindings)
        if not prompts:
            return "All required tools are already bound."
        return "\n\n".join(p.prompt for p in prompts)

    async def activate(self, expert_name: str) -> ActivationReport:
        """Validate, then compile, register triggers and write the system prompt.

        Raises:
            ActivationBlocked: validation reported at least one error.
            TriggerConfigError: a trigger lacks what its type needs to register.
        """

        expert_dir, manifest = await self.load_expert(expert_name)
        name = self._manifest_name(manifest, expert_dir)
        bindings = await self.bindings.read(name)
        result = await asyncio.to_thread(self._validate_sync, expert_dir, manifest, bindings)
        if not result.ok:
            raise ActivationBlocked(
                f"Activation blocked: run 'expert-runtime validate {expert_name}' first."
            )

        self.triggers.activate_manifest(manifest)
        await asyncio.to_thread(
            initialize_state_templates, expert_dir, self.settings.state_dir, name
        )
        compiled = await asyncio.to_thread(
            compile_expert, expert_dir, self.settings.compiled_dir, manifest, bindings
        )
        registration = await self.registrar.register_for_manifest(manifest)
        self._active[name] = manifest

        prompt_path = await self._write_system_prompt(expert_dir, manifest, bindings)
        await self.refresh_registry()
        logger.info("Expert activated", extra={"expert": name, "processes": len(compiled)})
        return ActivationReport(
            expert=name, compiled=compiled, registration=registration, prompt_path=prompt_path
        )

    async def system_prompt(self, expert_name: str) -> str:
        expert_dir, manifest = await self.load_expert(expert_name)
        name = self._manifest_name(manifest, expert_dir)
        bindings = await self.bindings.read(name)
        learnings = await self.learning.load_scope(name, PACKAGE_SCOPE)
        return await asyncio.to_thread(
            assemble_system_prompt, expert_dir, manifest, bindings, learnings
        )

    async def _write_system_prompt(
        self, expert_dir: Path, manifest: ExpertManifest, bindings: BindingFile
    ) -> Path:
        name = self._manifest_name(manifest, expert_dir)
        learnings = await self.learning.load_scope(name, PACKAGE_SCOPE)
        prompt = await asyncio.to_thread(
            assemble_system_prompt, expert_dir, manifest, bindings, learnings
        )
        path = self.settings.state_dir / name / SYSTEM_PROMPT_FILENAME

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(prompt, encoding="utf-8")

        await asyncio.to_thread(_write)
        return path

    async def refresh_registry(self) -> None:
        records = await asyncio.to_thread(list_installed_experts, self.settings.experts_dir)
        entries: list[RegistryEntry] = []
        for record in records:
            manifest = await asyncio.to_thread(load_manifest, record.root_dir)
            entries.append(
                RegistryEntry(manifest=manifest, bindings=await self.bindings.read(record.name))
            )
        await asyncio.to_thread(write_experts_registry, self.settings.registry_file, entries)

    async def run(
        self, expert_name: str, process_name: str, payload: dict[str, Any] | None = None
    ) -> RunOutcome:
        expert_dir, manifest = await self.load_expert(expert_name)
        name = self._manifest_name(manifest, expert_dir)
        await asyncio.to_thread(reset_session_state, expert_dir, self.settings.state_dir, name)
        return await self.executor.run(name, process_name, dict(payload or {}), manifest)

    async def approve(self, request_id: str) -> RunOutcome:
        return await self.executor.resume(request_id, True)

    async def reject(self, request_id: str) -> RunOutcome:
        return await self.executor.resume(request_id, False)

    async def pending_approvals(self) -> list[ApprovalRequest]:
        return await self.approvals.list_pending()

    async def process_approval_timeouts(self) -> list[ApprovalRequest]:
        return await self.approvals.expire_timed_out()

    # Learning

    async def propose_learning(self, expert_name: str, proposal: LearningProposal) -> str:
        expert_dir, manifest = await self.load_expert(expert_name)
        name = self._manifest_name(manifest, expert_dir)
        policy = manifest.learning
        if not policy.enabled:
            return "Learning is disabled for this expert."

        approval = policy.approval or "confirm"
        if approval == "auto":
            await self.learning.append_approved(name, proposal, policy.max_entries_per_file)
            return "Learning saved automatically."
        if approval == "manual":
            return f"Learning draft ready (manual): {proposal.title}"

        request = await self.approvals.create(
            expert_name=name,
            operation=LEARNING_OPERATION,
            tier="confirm",
            reason=f"Learning proposal: {proposal.title}",
            payload=proposal.model_dump(mode="json"),
        )
        return f"Learning requires approval. requestId={request.id}"

    async def apply_learning(self, request_id: str) -> str:
        request = await self.approvals.get(request_id)
        if request is None:
            raise ApprovalNotFound(f"No pending request {request_id}.")
        if request.operation != LEARNING_OPERATION:
            return f"Request {request_id} is not a learning proposal."
        await self._persist_learning(request)
        await self.approvals.resolve(request_id)
        return f"Learning applied for {request.expert_name}."

    async def _persist_learning(self, request: ApprovalRequest) -> None:
        _, manifest = await self.load_expert(request.expert_name)
        proposal = LearningProposal.model_validate(request.payload)
        await self.learning.append_approved(
            request.expert_name, proposal, manifest.learning.max_entries_per_file
        )

    async def _apply_direct_resolution(self, request: ApprovalRequest) -> None:
        if request.operation == LEARNING_OPERATION:
            await self._persist_learning(request)

    async def _on_approval_required(self, request: ApprovalRequest, message: str) -> None:
        logger.info(
            "Approval required",
            extra={"request_id": request.id, "operation": request.operation, "tier": request.tier},
        )
        if self._notifier is not None:
            await self._notifier(message)

    # Triggers

    async def _invoke_trigger(
        self, manifest: ExpertManifest, trigger: ExpertTrigger, payload: dict[str, Any]
    ) -> RunOutcome:
        outcome = await self.run(manifest.name or "", trigger.process, payload)
        if not outcome.ok and not outcome.paused:
            logger.warning(
                "Triggered process failed",
                extra={"expert": manifest.name, "trigger": trigger.name, "error": outcome.error},
            )
        return outcome

    async def fire_trigger(
        self, expert_name: str, trigger_name: str, payload: dict[str, Any] | None = None
    ) -> bool:
        """Dispatch one trigger event. Returns False when it was deduplicated."""

        _, manifest = await self.load_expert(expert_name)
        event = TriggerEvent(trigger_name=trigger_name, payload=dict(payload or {}))
        return await self.triggers.on_trigger_event(manifest, event)

    async def dispatch_channel_message(self, payload: dict[str, Any]) -> int:
        """Feed a channel message to every channel trigger of every active expert."""

        dispatched = 0
        for manifest in self.active_manifests:
            for trigger in manifest.triggers:
                if trigger.type != "channel":
                    continue
                enriched = {**payload, "__expert": manifest.name, "__trigger": trigger.name}
                event = TriggerEvent(trigger_name=trigger.name, payload=enriched, source="channel")
                if await self.triggers.on_trigger_event(manifest, event):
                    dispatched += 1
        return dispatched

    # Diagnostics

    async def doctor(self) -> str:
        s = self.settings
        lines = [f"dataDir: {s.data_dir}"]
        for label, path in s.runtime_dirs().items():
            lines.append(f"{label}: {'ok' if path.exists() else 'missing'} ({path})")
        lines.append(f"pending approvals: {len(await self.approvals.list_pending())}")

        records = await asyncio.to_thread(list_installed_experts, s.experts_dir)
        lines.append(f"installed experts: {len(records)}")

        version = await self.engine.version() if isinstance(self.engine, SubprocessEngine) else "custom"
        lines.append(f"{s.engine_command}: {version or 'missing'}")

        also_allow = self.host.strings("tools.alsoAllow")
        lines.append(f"llm-task enabled: {str(self.host.flag(LLM_TASK_ENABLED)).lower()}")
        lines.append(f"tools.alsoAllow has {s.engine_command}: {str(s.engine_command in also_allow).lower()}")
        lines.append(f"tools.alsoAllow has llm-task: {str(LLM_TASK_TOOL in also_allow).lower()}")
        network = self.host.text("sandbox.docker.network", "unknown")
        lines.append(f"sandbox.network: {network}")
        if network == "none":
            lines.append("WARN sandbox network is none; MCP/external tools may fail.")

        state = await self.registrar.state()
        lines.append(f"trigger registrar: {self.registrar.strategy}")
        lines.append(f"registered cron triggers: {sum(len(r.cron) for r in state.experts.values())}")
        lines.append(f"registered webhook triggers: {sum(len(r.webhook) for r in state.experts.values())}")

        fresh = total = 0
        stale: list[str] = []
        warnings: list[str] = []
        for record in records:
            manifest = await asyncio.to_thread(load_manifest, record.root_dir)
            summary = await asyncio.to_thread(
                compiled_freshness, record.root_dir, s.compiled_dir, manifest
            )
            fresh += summary.fresh
            total += summary.total
            stale.extend(summary.stale)

            try:
                bindings = await self.bindings.read(record.name)
            except BindingsInvalid as e:
                warnings.append(f"WARN {e}")
                continue
            prompt = await asyncio.to_thread(
                assemble_system_prompt, record.root_dir, manifest, bindings
            )
            if len(prompt) > s.prompt_budget_chars:
                warnings.append(f"WARN prompt budget exceeded for {record.name}: {len(prompt)} chars")

        lines.append(f"compiled workflows fresh: {fresh}/{total}")
        if stale:
            lines.append(f"stale workflows: {', '.join(stale)}")
        lines.extend(warnings)
        return "\n".join(lines)

    async def setup(self) -> str:
        """Patch the host config to enable what compiled workflows call.

        Turns on the llm-task plugin, allowlists the engine and llm-task
        tools, and enables hooks when any installed expert declares a webhook
        trigger. The document is saved only when something changed.
        """

        s = self.settings
        lines: list[str] = []
        version = await self.engine.version() if isinstance(self.engine, SubprocessEngine) else "custom"
        lines.append(f"{s.engine_command}: {version or 'missing'}")
        if not version:
            lines.append(f"WARN {s.engine_command} is not installed; install it before running processes.")

        changes: list[str] = []
        if not self.host.flag(LLM_TASK_ENABLED):
            self.host.set(LLM_TASK_ENABLED, True)
            changes.append("enabled llm-task")
        also_allow = self.host.strings("tools.alsoAllow")
        missing = [tool for tool in (s.engine_command, LLM_TASK_TOOL) if tool not in also_allow]
        if missing:
            self.host.set("tools.alsoAllow", [*also_allow, *missing])
            changes.append(f"allowlisted {', '.join(missing)}")
        if await self._any_webhook_triggers():
            if not self.host.flag("hooks.enabled"):
                self.host.set("hooks.enabled", True)
                changes.append("enabled hooks")
            if not self.host.text("hooks.token").strip():
                lines.append("WARN webhook triggers need hooks.token; set it before delivering events.")

        if not changes:
            lines.append("Host configuration already up to date.")
        elif self.host.source is None:
            lines.append(f"Host configuration has no backing file; apply manually: {'; '.join(changes)}.")
        else:
            await asyncio.to_thread(self.host.save)
            lines.append(f"Applied host config patch: {'; '.join(changes)}.")
            lines.append("Host configuration changed; restart the host to apply it.")

        logger.info("Host setup checked", extra={"changes": changes})
        return "\n".join(lines)

    async def _any_webhook_triggers(self) -> bool:
        records = await asyncio.to_thread(list_installed_experts, self.settings.experts_dir)
        for record in records:
            manifest = await asyncio.to_thread(load_manifest, record.root_dir)
            if any(t.type == "webhook" for t in manifest.triggers):
                return True
        return False
