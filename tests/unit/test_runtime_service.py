"""Unit tests for the runtime facade and the host event bridge."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from expert_runtime.bindings import ToolBinding
from expert_runtime.errors import (
    ActivationBlocked,
    BindingsInvalid,
    ExpertNotFound,
    TriggerConfigError,
    WorkflowNotFound,
)
from expert_runtime.host import HostConfig
from expert_runtime.learning import LearningProposal
from expert_runtime.runtime import ExpertRuntime, HostEventBridge
from expert_runtime.runtime.config import RuntimeSettings
from expert_runtime.workflow.engine import EngineResult

PAUSE = json.dumps({"status": "needs_approval", "resumeToken": "tok-1", "operation": "crm.update_ticket"})
CRM = ToolBinding(type="mcp", server="crm-mcp")


@pytest.fixture
def notes() -> list[str]:
    return []


@pytest.fixture
def runtime(settings: RuntimeSettings, engine, clock, notes: list[str]) -> ExpertRuntime:
    async def notifier(message: str) -> None:
        notes.append(message)

    async def no_sleep(delay: float) -> None:
        return None

    return ExpertRuntime(
        settings,
        engine=engine,
        host_config=HostConfig(source=settings.data_dir / "host.json"),
        notifier=notifier,
        clock=clock,
        sleep=no_sleep,
    )


async def _activated(runtime: ExpertRuntime) -> None:
    await runtime.boot()
    await runtime.bind("support", "crm", CRM)
    await runtime.activate("support")


@pytest.mark.asyncio
async def test_validate_reports_missing_binding(runtime: ExpertRuntime, expert_dir: Path) -> None:
    await runtime.boot()

    result = await runtime.validate("support")

    assert result.ok is False
    assert [(f.severity, f.code) for f in result.findings] == [("error", "binding_missing")]


@pytest.mark.asyncio
async def test_activation_is_blocked_until_bound(runtime: ExpertRuntime, expert_dir: Path) -> None:
    await runtime.boot()

    with pytest.raises(ActivationBlocked):
        await runtime.activate("support")

    await runtime.bind("support", "crm", CRM)
    result = await runtime.validate("support")
    assert result.ok is True
    assert [f.code for f in result.warnings] == ["binding_mcp_unreachable"]


@pytest.mark.asyncio
async def test_activate_compiles_and_writes_artifacts(
    runtime: ExpertRuntime, settings: RuntimeSettings, expert_dir: Path
) -> None:
    await runtime.boot()
    await runtime.bind("support", "crm", CRM)

    report = await runtime.activate("support")

    assert [(c.process_name, c.step_count) for c in report.compiled] == [("triage", 4)]
    assert (settings.compiled_dir / "support" / "triage.lobster").exists()
    assert report.prompt_path == settings.state_dir / "support" / "SYSTEM_PROMPT.md"
    prompt = report.prompt_path.read_text(encoding="utf-8")
    assert "You are a calm, precise support agent." in prompt
    assert "- crm: mcp(crm-mcp)" in prompt
    assert "AUTO: crm.lookup" in prompt
    assert "## support" in settings.registry_file.read_text(encoding="utf-8")
    assert "Activated support." in report.render()

    summaries = await runtime.list_experts()
    assert [(s.name, s.status, s.bound, s.required) for s in summaries] == [("support", "active", 1, 1)]


@pytest.mark.asyncio
async def test_activation_rejects_incomplete_triggers(runtime: ExpertRuntime, make_expert) -> None:
    make_expert(manifest={"triggers": [{"name": "nightly", "type": "cron", "process": "triage"}]})
    await runtime.boot()
    await runtime.bind("support", "crm", CRM)

    with pytest.raises(TriggerConfigError):
        await runtime.activate("support")


@pytest.mark.asyncio
async def test_unknown_expert(runtime: ExpertRuntime, expert_dir: Path) -> None:
    with pytest.raises(ExpertNotFound):
        await runtime.validate("billing")


@pytest.mark.asyncio
async def test_run_before_activation(runtime: ExpertRuntime, expert_dir: Path) -> None:
    await runtime.boot()

    with pytest.raises(WorkflowNotFound):
        await runtime.run("support", "triage")


@pytest.mark.asyncio
async def test_run_pause_and_approve(runtime: ExpertRuntime, engine, expert_dir: Path, notes) -> None:
    await _activated(runtime)
    engine.results = [EngineResult(ok=True, stdout=PAUSE)]

    paused = await runtime.run("support", "triage", {"ticket": {"id": 7}})

    assert paused.paused is True
    pending = await runtime.pending_approvals()
    assert [r.id for r in pending] == [paused.request_id]
    assert notes == [f"Approval required for crm.update_ticket. requestId={paused.request_id}"]

    outcome = await runtime.approve(paused.request_id or "")
    assert outcome.ok is True
    assert engine.resumes == [("tok-1", True)]
    assert await runtime.pending_approvals() == []


@pytest.mark.asyncio
async def test_run_resets_session_state(runtime: ExpertRuntime, make_expert, settings) -> None:
    make_expert(
        manifest={},
        files={
            "state/session.md": "---\nscope: session\n---\nfresh\n",
            "state/memory.md": "---\nscope: persistent\n---\nfresh\n",
        },
    )
    await _activated(runtime)
    working = settings.state_dir / "support" / "state"
    (working / "session.md").write_text("dirty", encoding="utf-8")
    (working / "memory.md").write_text("dirty", encoding="utf-8")

    await runtime.run("support", "triage")

    assert (working / "session.md").read_text(encoding="utf-8").endswith("fresh\n")
    assert (working / "memory.md").read_text(encoding="utf-8") == "dirty"


@pytest.mark.asyncio
async def test_fire_trigger_deduplicates(runtime: ExpertRuntime, engine, expert_dir: Path) -> None:
    await _activated(runtime)

    first = await runtime.fire_trigger("support", "new_ticket", {"ticket": {"id": 7}})
    repeat = await runtime.fire_trigger("support", "new_ticket", {"ticket": {"id": 7}})

    assert (first, repeat) == (True, False)
    assert len(engine.runs) == 1


@pytest.mark.asyncio
async def test_approval_timeouts_expire(runtime: ExpertRuntime, make_expert, engine, clock) -> None:
    make_expert(
        manifest={"policy": {"approval": {"default": "confirm", "overrides": {}, "timeout": "1s"}}}
    )
    await _activated(runtime)
    engine.results = [EngineResult(ok=True, stdout=PAUSE)]
    await runtime.run("support", "triage")

    clock.advance(1)

    assert len(await runtime.process_approval_timeouts()) == 1
    assert await runtime.process_approval_timeouts() == []


@pytest.mark.asyncio
async def test_learning_confirm_flow(runtime: ExpertRuntime, make_expert) -> None:
    make_expert(manifest={"learning": {"enabled": True, "approval": "confirm", "max_entries_per_file": 5}})
    await runtime.boot()
    proposal = LearningProposal(title="Prefer billing", observation="o", correction="c")

    message = await runtime.propose_learning("support", proposal)
    request_id = message.split("requestId=")[1]
    outcome = await runtime.approve(request_id)

    assert outcome.ok is True
    entries = await runtime.learning.entries("support", "package")
    assert [e.title for e in entries] == ["Prefer billing"]
    assert "### Prefer billing" in await runtime.system_prompt("support")


@pytest.mark.asyncio
async def test_learning_tiers(runtime: ExpertRuntime, make_expert) -> None:
    make_expert(manifest={"learning": {"enabled": True, "approval": "auto"}})
    await runtime.boot()
    proposal = LearningProposal(title="Auto lesson")

    assert await runtime.propose_learning("support", proposal) == "Learning saved automatically."
    assert await runtime.pending_approvals() == []

    make_expert(manifest={"learning": {"enabled": False}})
    assert await runtime.propose_learning("support", proposal) == "Learning is disabled for this expert."


@pytest.mark.asyncio
async def test_apply_learning_ignores_other_requests(runtime: ExpertRuntime, expert_dir: Path) -> None:
    await runtime.boot()
    request = await runtime.approvals.create(
        expert_name="support", operation="crm.update_ticket", tier="confirm", reason="r"
    )

    assert "not a learning proposal" in await runtime.apply_learning(request.id)


@pytest.mark.asyncio
async def test_doctor_reports_host_and_workflows(runtime: ExpertRuntime, expert_dir: Path) -> None:
    runtime.host.set("sandbox.docker.network", "none")
    await _activated(runtime)

    report = await runtime.doctor()

    assert "installed experts: 1" in report
    assert "trigger registrar: host-config" in report
    assert "compiled workflows fresh: 1/1" in report
    assert "WARN sandbox network is none" in report


@pytest.mark.asyncio
async def test_bridge_routes_channel_messages(runtime: ExpertRuntime, make_expert, engine) -> None:
    make_expert(manifest={"triggers": [{"name": "inbox", "type": "channel", "process": "triage"}]})
    await _activated(runtime)
    bridge = HostEventBridge(runtime)

    dispatched = await bridge.on_message_received(
        {"context": {"from": "u-1", "content": "help", "channelId": "slack"}}
    )

    assert dispatched == 1
    payload = engine.runs[-1][1]
    assert payload["message_text"] == "help"
    assert payload["__expert"] == "support"
    assert payload["__trigger"] == "inbox"


@pytest.mark.asyncio
async def test_bridge_prepends_system_prompt(runtime: ExpertRuntime, expert_dir: Path) -> None:
    bridge = HostEventBridge(runtime)
    event = {"context": {"sessionKey": "agent:main:expert:support", "prependContext": ["x"]}}

    assert await bridge.before_prompt_build(event) is True
    assert event["context"]["prependContext"][0] == "x"
    assert event["context"]["prependContext"][1].startswith("## Identity")

    assert await bridge.before_prompt_build({"context": {"sessionKey": "agent:main"}}) is False
    assert await bridge.before_prompt_build({"context": {"sessionKey": "expert:ghost"}}) is False


@pytest.mark.asyncio
async def test_setup_patches_host_config(
    runtime: ExpertRuntime, expert_dir: Path, settings: RuntimeSettings
) -> None:
    runtime.host.set("tools.alsoAllow", ["browser"])

    report = await runtime.setup()

    saved = json.loads((settings.data_dir / "host.json").read_text(encoding="utf-8"))
    assert saved["plugins"]["entries"]["llm-task"]["enabled"] is True
    assert saved["tools"]["alsoAllow"] == ["browser", "lobster", "llm-task"]
    assert saved["hooks"]["enabled"] is True
    assert "Applied host config patch" in report
    assert "WARN webhook triggers need hooks.token" in report
    assert "llm-task enabled: true" in await runtime.doctor()

    assert "Host configuration already up to date." in await runtime.setup()


@pytest.mark.asyncio
async def test_setup_leaves_hooks_alone_without_webhook_triggers(
    settings: RuntimeSettings, engine, make_expert
) -> None:
    make_expert(manifest={"triggers": []})
    runtime = ExpertRuntime(settings, engine=engine, host_config=HostConfig())

    report = await runtime.setup()

    assert runtime.host.get("hooks") is None
    assert runtime.host.flag("plugins.entries.llm-task.enabled") is True
    assert "no backing file; apply manually" in report


@pytest.mark.asyncio
async def test_list_survives_unreadable_bindings(
    runtime: ExpertRuntime, expert_dir: Path, settings: RuntimeSettings
) -> None:
    path = settings.config_dir / "support" / "bindings.yaml"
    path.parent.mkdir(parents=True)
    path.write_text("tools: {crm: [", encoding="utf-8")

    [summary] = await runtime.list_experts()

    assert (summary.bound, summary.required) == (0, 1)
    with pytest.raises(BindingsInvalid):
        await runtime.validate("support")
