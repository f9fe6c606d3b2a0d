"""System prompt assembly for an installed expert."""

from __future__ import annotations

from pathlib import Path

from expert_runtime.bindings.store import BindingFile
from expert_runtime.spec.components import process_name, read_markdown
from expert_runtime.spec.manifest import DEFAULT_APPROVAL_TIER, ExpertManifest

SYSTEM_PROMPT_FILENAME = "SYSTEM_PROMPT.md"


def _read_optional(path: Path) -> str:
    return path.read_text(encoding="utf-8") if path.is_file() else ""


def named_index(expert_dir: Path, files: list[str]) -> str:
    rows: list[str] = []
    for rel in files:
        doc = read_markdown(expert_dir / rel)
        if doc is None:
            continue
        description = doc.frontmatter.get("description")
        rows.append(
            f"- {process_name(rel, doc.frontmatter)}: "
            f"{description if isinstance(description, str) else ''}"
        )
    return "\n".join(rows)


def render_bindings(bindings: BindingFile) -> str:
    return "\n".join(
        f"- {tool}: {binding.type}({binding.target or 'unknown'})"
        for tool, binding in bindings.tools.items()
    )


def render_policy(manifest: ExpertManifest) -> str:
    tiers: dict[str, list[str]] = {"auto": [], "confirm": [], "manual": []}
    for operation, tier in manifest.policy.approval.overrides.items():
        tiers[tier if tier in ("auto", "manual") else "confirm"].append(operation)
    return "\n".join(
        [
            f"AUTO: {', '.join(sorted(tiers['auto'])) or '(none)'}",
            f"CONFIRM: {', '.join(sorted(tiers['confirm'])) or '(none)'}",
            f"MANUAL: {', '.join(sorted(tiers['manual'])) or '(none)'}",
            f"Default: {manifest.policy.approval.default or DEFAULT_APPROVAL_TIER}",
        ]
    )


def assemble_system_prompt(
    expert_dir: Path,
    manifest: ExpertManifest,
    bindings: BindingFile,
    learnings: str = "",
) -> str:
    components = manifest.components
    persona = components.persona if components else []
    orchestrator = components.orchestrator if components else None

    sections = [
        "## Identity",
        "\n\n".join(text for text in (_read_optional(expert_dir / rel) for rel in persona) if text),
        "## How to Operate",
        _read_optional(expert_dir / orchestrator) if orchestrator else "",
        "## Available Functions",
        named_index(expert_dir, components.functions if components else []),
        "## Available Processes",
        named_index(expert_dir, components.processes if components else []),
        "## Available Knowledge",
        named_index(expert_dir, components.knowledge if components else []),
        "## Tool Bindings",
        render_bindings(bindings),
        "## Tool Approval Policy",
        render_policy(manifest),
    ]
    if learnings:
        sections.extend(["## Learnings", learnings])
    return "\n\n".join(sections).strip()
