from __future__ import annotations

from dataclasses import dataclass

from expert_runtime.bindings.store import BindingFile
from expert_runtime.spec.manifest import ExpertManifest


@dataclass(frozen=True, slots=True)
class BindingPrompt:
    tool: str
    prompt: str


def build_binding_prompts(manifest: ExpertManifest, bindings: BindingFile) -> list[BindingPrompt]:
    """One suggestion per required tool that has no binding yet."""

    prompts: list[BindingPrompt] = []
    for tool in manifest.required_tools:
        if tool in bindings.tools:
            continue
        prompts.append(
            BindingPrompt(
                tool=tool,
                prompt="\n".join(
                    [
                        f"Tool '{tool}' is not bound.",
                        "Choose one:",
                        f"  - expert-runtime bind {manifest.name} {tool} --mcp <server-name>",
                        f"  - expert-runtime bind {manifest.name} {tool} --skill <skill-name>",
                    ]
                ),
            )
        )
    return prompts
