from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from expert_runtime.bindings.store import BindingFile
from expert_runtime.spec.manifest import ExpertManifest


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    manifest: ExpertManifest
    bindings: BindingFile


def render_experts_registry(entries: list[RegistryEntry]) -> str:
    lines = ["# Available Experts", ""]
    for entry in entries:
        manifest = entry.manifest
        lines.extend(
            [
                f"## {manifest.name}",
                f"- Description: {manifest.description or ''}",
                f"- Version: {manifest.version or ''}",
                f"- Triggers: {len(manifest.triggers)}",
                f"- Tools bound: {len(entry.bindings.tools)}",
                "",
            ]
        )
    return "\n".join(lines)


def write_experts_registry(path: Path, entries: list[RegistryEntry]) -> None:
    """Rewrite ``EXPERTS.md`` listing every installed expert."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_experts_registry(entries), encoding="utf-8")
