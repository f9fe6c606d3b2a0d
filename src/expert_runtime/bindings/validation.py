"""Binding completeness and reachability checks.

Completeness problems are errors and block activation. Reachability is only
informational: a binding may name a server or skill the host registers later.
"""

from __future__ import annotations

from expert_runtime.bindings.store import BindingFile
from expert_runtime.host import HostConfig
from expert_runtime.spec.manifest import ExpertManifest
from expert_runtime.spec.validator import ValidationFinding

_PATH = "bindings.yaml"


def _binding_error(code: str, message: str) -> ValidationFinding:
    return ValidationFinding(
        severity="error", code=code, message=message, path=_PATH, category="binding"
    )


def _binding_warn(code: str, message: str) -> ValidationFinding:
    return ValidationFinding(
        severity="warn", code=code, message=message, path=_PATH, category="binding"
    )


def validate_bindings(manifest: ExpertManifest, bindings: BindingFile) -> list[ValidationFinding]:
    findings: list[ValidationFinding] = []
    for tool in manifest.required_tools:
        binding = bindings.tools.get(tool)
        if binding is None:
            findings.append(
                _binding_error("binding_missing", f"Missing binding for required tool '{tool}'")
            )
            continue
        if binding.type == "mcp" and not binding.server:
            findings.append(
                _binding_error(
                    "binding_mcp_server_missing",
                    f"Binding for '{tool}' is mcp but server is empty",
                )
            )
        if binding.type == "skill" and not binding.skill:
            findings.append(
                _binding_error(
                    "binding_skill_missing",
                    f"Binding for '{tool}' is skill but skill is empty",
                )
            )
    return findings


def validate_binding_reachability(
    bindings: BindingFile, host: HostConfig
) -> list[ValidationFinding]:
    findings: list[ValidationFinding] = []
    mcp_entries = set(host.keys("mcp.entries"))
    skill_entries = set(host.keys("skills.entries"))

    for tool, binding in bindings.tools.items():
        if binding.type == "mcp" and binding.server and binding.server not in mcp_entries:
            findings.append(
                _binding_warn(
                    "binding_mcp_unreachable",
                    f"Bound MCP server '{binding.server}' for tool '{tool}' not found in host config.",
                )
            )
        if binding.type == "skill" and binding.skill and binding.skill not in skill_entries:
            findings.append(
                _binding_warn(
                    "binding_skill_unreachable",
                    f"Bound skill '{binding.skill}' for tool '{tool}' not found in host config.",
                )
            )
    return findings
