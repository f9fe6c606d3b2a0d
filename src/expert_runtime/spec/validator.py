"""Static validation of an expert package.

Validation never raises for content problems: every check runs, and every
problem is returned as a finding so that a single pass shows the full picture.
Only a missing or unparsable manifest is fatal, and that is raised by
:func:`expert_runtime.spec.manifest.load_manifest` before validation starts.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from expert_runtime.spec.components import (
    build_component_index,
    normalize_slashes,
    read_frontmatter,
    string_list,
)
from expert_runtime.spec.manifest import APPROVAL_TIERS, Components, ExpertManifest

Severity = Literal["error", "warn"]

REQUIRED_FIELDS: tuple[str, ...] = ("spec", "name", "version", "description", "components")
REQUIRED_COMPONENTS: tuple[str, ...] = ("orchestrator", "persona", "functions", "processes")

_MANIFEST = "expert.yaml"
_OVERRIDES = "expert.yaml:policy.approval.overrides"


@dataclass(frozen=True, slots=True)
class ValidationFinding:
    severity: Severity
    code: str
    message: str
    path: str | None = None
    category: Literal["manifest", "binding"] = "manifest"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def render(self) -> str:
        return f"{self.severity.upper()} [{self.code}] {self.message}"


@dataclass(frozen=True, slots=True)
class ValidationResult:
    ok: bool
    findings: list[ValidationFinding]

    @classmethod
    def from_findings(cls, findings: Iterable[ValidationFinding]) -> ValidationResult:
        items = list(findings)
        return cls(ok=not any(f.is_error for f in items), findings=items)

    @property
    def errors(self) -> list[ValidationFinding]:
        return [f for f in self.findings if f.is_error]

    @property
    def warnings(self) -> list[ValidationFinding]:
        return [f for f in self.findings if not f.is_error]


def error(code: str, message: str, path: str | None = None) -> ValidationFinding:
    return ValidationFinding(severity="error", code=code, message=message, path=path)


def warn(code: str, message: str, path: str | None = None) -> ValidationFinding:
    return ValidationFinding(severity="warn", code=code, message=message, path=path)


def render_report(findings: list[ValidationFinding]) -> str:
    """Render findings as one report, distinguishing failure from warnings."""

    if not findings:
        return "Validation passed with no issues."
    failed = any(f.is_error for f in findings)
    header = "Validation failed" if failed else "Validation passed with warnings"
    return "\n".join([header, *(f.render() for f in findings)])


def validate_manifest(expert_dir: Path, manifest: ExpertManifest) -> ValidationResult:
    findings: list[ValidationFinding] = []

    for name in REQUIRED_FIELDS:
        if getattr(manifest, name) in (None, ""):
            findings.append(
                error(
                    "required_field_missing",
                    f"Missing required manifest field: {name}",
                    f"{_MANIFEST}:{name}",
                )
            )

    # A missing block is already reported above; cross-reference checks still
    # run against an empty index.
    components = manifest.components or Components()

    for key in REQUIRED_COMPONENTS:
        if manifest.components is not None and not getattr(components, key):
            findings.append(
                error(
                    "required_component_missing",
                    f"Missing required components.{key}",
                    f"{_MANIFEST}:components.{key}",
                )
            )

    for rel in components.declared_paths():
        if not (expert_dir / rel).exists():
            findings.append(error("component_path_missing", f"Component path not found: {rel}", rel))

    index = build_component_index(
        expert_dir,
        processes=components.processes,
        functions=components.functions,
        tools=components.tools,
        knowledge=components.knowledge,
    )
    required_tools = set(manifest.required_tools)
    trigger_names = {t.name for t in manifest.triggers}

    for trigger in manifest.triggers:
        if trigger.process not in index.process_names:
            findings.append(
                error(
                    "trigger_process_unresolved",
                    f"Trigger '{trigger.name}' references unknown process '{trigger.process}'",
                    f"{_MANIFEST}:triggers",
                )
            )

    for rel in components.processes:
        fm = read_frontmatter(expert_dir / rel)
        if fm is None:
            continue
        trigger_name = fm.get("trigger")
        if isinstance(trigger_name, str) and trigger_name not in trigger_names:
            findings.append(
                warn(
                    "process_trigger_unresolved",
                    f"Process trigger '{trigger_name}' does not exist in manifest triggers",
                    rel,
                )
            )
        for fn_name in string_list(fm.get("functions")):
            if fn_name not in index.function_names:
                findings.append(
                    warn(
                        "process_function_unresolved",
                        f"Process references unknown function '{fn_name}'",
                        rel,
                    )
                )
        for tool in string_list(fm.get("tools")):
            if tool not in required_tools:
                findings.append(
                    error(
                        "process_tool_not_declared",
                        f"Process references tool '{tool}' not declared under requires.tools",
                        rel,
                    )
                )

    for rel in components.functions:
        fm = read_frontmatter(expert_dir / rel)
        if fm is None:
            continue
        for tool in string_list(fm.get("tools")):
            if tool not in required_tools:
                findings.append(
                    error(
                        "function_tool_not_declared",
                        f"Function references tool '{tool}' not declared under requires.tools",
                        rel,
                    )
                )
        for knowledge in string_list(fm.get("knowledge")):
            if normalize_slashes(knowledge) not in index.knowledge_paths:
                findings.append(
                    warn(
                        "function_knowledge_unresolved",
                        f"Function references knowledge '{knowledge}' not listed in "
                        "components.knowledge",
                        rel,
                    )
                )

    approval = manifest.policy.approval
    if approval.default is not None and approval.default not in APPROVAL_TIERS:
        findings.append(
            error(
                "policy_tier_invalid",
                f"policy.approval.default '{approval.default}' must be auto, confirm, or manual",
                f"{_MANIFEST}:policy.approval.default",
            )
        )

    for key, tier in approval.overrides.items():
        if tier not in APPROVAL_TIERS:
            findings.append(
                error(
                    "policy_tier_invalid",
                    f"Policy override '{key}' has invalid tier '{tier}'",
                    _OVERRIDES,
                )
            )
        parts = key.split(".")
        if len(parts) != 2 or not all(parts):
            findings.append(
                warn(
                    "policy_override_format",
                    f"Policy override '{key}' should use format tool.operation",
                    _OVERRIDES,
                )
            )
            continue
        tool, operation = parts
        if tool not in required_tools:
            findings.append(
                warn(
                    "policy_override_tool_unknown",
                    f"Policy override '{key}' references undeclared tool '{tool}'",
                    _OVERRIDES,
                )
            )
            continue
        operations = index.tool_operations.get(tool)
        if operations is not None and operation not in operations:
            findings.append(
                warn(
                    "policy_override_operation_unknown",
                    f"Policy override '{key}' references unknown operation '{operation}'",
                    _OVERRIDES,
                )
            )

    learning_approval = manifest.learning.approval
    if learning_approval is not None and learning_approval not in APPROVAL_TIERS:
        findings.append(
            error(
                "learning_approval_invalid",
                "learning.approval must be auto, confirm, or manual",
                f"{_MANIFEST}:learning.approval",
            )
        )

    return ValidationResult.from_findings(findings)
