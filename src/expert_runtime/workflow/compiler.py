"""Compile process checklists into approval-gated engine workflows.

Each process markdown file becomes one workflow:

1. a preamble (scratchpad init, one context read per declared context file,
   one step per declared function dependency), then
2. one step per unchecked checklist line (``- [ ] ...``), or a single
   fallback step running the whole process body when there are none.

A checklist line naming ``tool.operation`` for a bound tool becomes a direct
tool invocation, gated by the approval policy. Anything else degrades to a
free-text instruction step: compilation never fails on an unresolved operation.
"""

from __future__ import annotations

import json
import logging
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from expert_runtime.bindings.store import BindingFile, ToolBinding
from expert_runtime.fileio import write_atomic
from expert_runtime.spec.components import (
    ComponentIndex,
    build_component_index,
    process_name,
    read_markdown,
    string_list,
)
from expert_runtime.spec.manifest import DEFAULT_APPROVAL_TIER, ExpertManifest
from expert_runtime.workflow.models import (
    CompiledWorkflow,
    WorkflowStep,
    is_stale,
    workflow_path,
)

logger = logging.getLogger(__name__)

INVOKE = "openclaw.invoke"
CHECKLIST_MARKER = "- [ ] "
FALLBACK_INSTRUCTION = "Run process using declared body instructions."

_OPERATION_RE = re.compile(r"([A-Za-z0-9_-]+)\.([A-Za-z0-9_-]+)")
_ID_RE = re.compile(r"[^A-Za-z0-9_]+")


@dataclass(frozen=True, slots=True)
class CompileResult:
    process_name: str
    output_path: Path
    step_count: int


@dataclass(frozen=True, slots=True)
class FunctionMeta:
    name: str
    session: str | None
    outputs: dict[str, dict[str, Any]]


def sanitize_id(value: str) -> str:
    return _ID_RE.sub("_", value)


def json_arg(value: object) -> str:
    return shlex.quote(json.dumps(value, ensure_ascii=False))


def extract_checklist_steps(markdown: str) -> list[str]:
    steps: list[str] = []
    for line in markdown.splitlines():
        stripped = line.strip()
        if stripped.startswith(CHECKLIST_MARKER):
            steps.append(stripped[len(CHECKLIST_MARKER) :].strip())
    return steps


def extract_operation(text: str) -> tuple[str, str] | None:
    """First ``tool.operation`` token in `text`, if any."""

    match = _OPERATION_RE.search(text)
    if match is None:
        return None
    return match.group(1), match.group(2)


def resolve_tier(manifest: ExpertManifest, operation: str) -> str:
    """Approval tier for `tool.operation`: override, then default, then "confirm"."""

    approval = manifest.policy.approval
    override = approval.overrides.get(operation)
    if override:
        return override
    return approval.default or DEFAULT_APPROVAL_TIER


def candidate_names(binding: ToolBinding, tool: str, operation: str) -> list[str]:
    """Callable names to try, in order, when invoking a bound operation."""

    mapped = binding.mapped_operation(operation)
    target = binding.target or tool
    ordered = [
        mapped,
        f"{target}.{mapped}",
        f"{target}_{mapped}",
        f"{tool}.{mapped}",
        f"{tool}_{mapped}",
        operation,
        *binding.operation_aliases(operation),
    ]
    seen: set[str] = set()
    unique: list[str] = []
    for name in ordered:
        if name not in seen:
            seen.add(name)
            unique.append(name)
    return unique


def generic_step(step_id: str, prompt: str) -> WorkflowStep:
    return WorkflowStep(
        id=step_id,
        command=f"{INVOKE} --tool llm-task --action json --args-json {json_arg({'prompt': prompt})}",
    )


def build_step(
    step_id: str,
    text: str,
    manifest: ExpertManifest,
    bindings: BindingFile,
    index: ComponentIndex,
) -> WorkflowStep:
    token = extract_operation(text)
    if token is None:
        return generic_step(step_id, text)

    tool, op = token
    binding = bindings.tools.get(tool)
    if binding is None:
        logger.debug("Step references unbound tool; degrading", extra={"tool": tool, "step": step_id})
        return generic_step(step_id, f"Missing binding for {tool}. Step: {text}")

    operation = f"{tool}.{op}"
    mapped = binding.mapped_operation(op)
    tier = resolve_tier(manifest, operation)
    tool_doc = index.tool_docs.get(tool)
    return WorkflowStep(
        id=step_id,
        command=f"{INVOKE} --tool {binding.target or tool} --action {mapped}",
        operation=operation,
        approval=None if tier == "auto" else "required",
        input=tool_doc.operation_input(op) if tool_doc else None,
        candidates=candidate_names(binding, tool, op),
    )


def output_schema(value: object) -> dict[str, dict[str, Any]]:
    props: dict[str, dict[str, Any]] = {}
    if not isinstance(value, list):
        return props
    for row in value:
        if not isinstance(row, dict):
            continue
        name, type_ = row.get("name"), row.get("type")
        if not isinstance(name, str) or not isinstance(type_, str):
            continue
        prop: dict[str, Any] = {"type": type_}
        if isinstance(row.get("enum"), list):
            prop["enum"] = row["enum"]
        props[name] = prop
    return props


def normalize_inputs(value: object) -> dict[str, dict[str, str]]:
    args: dict[str, dict[str, str]] = {}
    if not isinstance(value, list):
        return args
    for row in value:
        if isinstance(row, dict) and isinstance(row.get("name"), str) and isinstance(row.get("type"), str):
            args[row["name"]] = {"type": row["type"]}
    return args


def load_function_meta(expert_dir: Path, function_files: list[str]) -> dict[str, FunctionMeta]:
    meta: dict[str, FunctionMeta] = {}
    for rel in function_files:
        doc = read_markdown(expert_dir / rel)
        if doc is None or not isinstance(doc.frontmatter.get("name"), str):
            continue
        fm = doc.frontmatter
        session = fm.get("session")
        meta[fm["name"]] = FunctionMeta(
            name=fm["name"],
            session=session if isinstance(session, str) else None,
            outputs=output_schema(fm.get("outputs")),
        )
    return meta


def build_preamble(
    frontmatter: dict[str, Any], functions: dict[str, FunctionMeta]
) -> list[WorkflowStep]:
    steps: list[WorkflowStep] = []

    scratchpad = frontmatter.get("scratchpad")
    if isinstance(scratchpad, str) and scratchpad:
        args = json_arg({"path": scratchpad, "content": "# Scratchpad\n"})
        steps.append(
            WorkflowStep(
                id="scratchpad_init",
                command=f"{INVOKE} --tool write --args-json {args}",
            )
        )

    for context_file in string_list(frontmatter.get("context")):
        steps.append(
            WorkflowStep(
                id=f"context_{sanitize_id(context_file)}",
                command=f"{INVOKE} --tool read --args-json {json_arg({'path': context_file})}",
            )
        )

    for fn_name in string_list(frontmatter.get("functions")):
        meta = functions.get(fn_name)
        if meta is not None and meta.session == "isolated":
            steps.append(
                WorkflowStep(
                    id=f"function_{sanitize_id(fn_name)}_isolated",
                    command=f"lobster run functions/{fn_name}.lobster",
                )
            )
            continue
        schema = {"type": "object", "properties": meta.outputs if meta else {}}
        args = json_arg(
            {"prompt": f"Run function {fn_name}. Use declared outputs only.", "schema": schema}
        )
        steps.append(
            WorkflowStep(
                id=f"function_{sanitize_id(fn_name)}_inline",
                command=f"{INVOKE} --tool llm-task --action json --args-json {args}",
            )
        )

    return steps


def compile_process(
    expert_dir: Path,
    process_file: str,
    manifest: ExpertManifest,
    bindings: BindingFile,
    *,
    index: ComponentIndex,
    functions: dict[str, FunctionMeta],
) -> CompiledWorkflow:
    doc = read_markdown(expert_dir / process_file)
    if doc is None:
        raise FileNotFoundError(expert_dir / process_file)

    preamble = build_preamble(doc.frontmatter, functions)
    checklist = extract_checklist_steps(doc.body)

    steps = list(preamble)
    if not checklist:
        body = doc.body.strip()
        prompt = f"{FALLBACK_INSTRUCTION}\n\n{body}" if body else FALLBACK_INSTRUCTION
        steps.append(generic_step(f"step_{len(preamble) + 1}", prompt))
    else:
        for n, text in enumerate(checklist, start=len(preamble) + 1):
            steps.append(build_step(f"step_{n}", text, manifest, bindings, index))

    return CompiledWorkflow(
        name=process_name(process_file, doc.frontmatter),
        args=normalize_inputs(doc.frontmatter.get("inputs")),
        steps=steps,
    )


def compile_expert(
    expert_dir: Path,
    compiled_dir: Path,
    manifest: ExpertManifest,
    bindings: BindingFile,
) -> list[CompileResult]:
    """Compile every declared process, then write each workflow atomically."""

    components = manifest.components
    if components is None or manifest.name is None:
        return []

    index = build_component_index(
        expert_dir,
        processes=components.processes,
        functions=components.functions,
        tools=components.tools,
        knowledge=components.knowledge,
    )
    functions = load_function_meta(expert_dir, components.functions)

    compiled = [
        compile_process(
            expert_dir, rel, manifest, bindings, index=index, functions=functions
        )
        for rel in components.processes
    ]

    results: list[CompileResult] = []
    for workflow in compiled:
        out = workflow_path(compiled_dir, manifest.name, workflow.name)
        write_atomic(out, workflow.to_yaml())
        results.append(
            CompileResult(process_name=workflow.name, output_path=out, step_count=len(workflow.steps))
        )
        logger.info(
            "Workflow compiled",
            extra={"expert": manifest.name, "process_name": workflow.name, "steps": len(workflow.steps)},
        )
    return results


@dataclass(frozen=True, slots=True)
class Freshness:
    fresh: int
    total: int
    stale: list[str]


def compiled_freshness(expert_dir: Path, compiled_dir: Path, manifest: ExpertManifest) -> Freshness:
    """Count compiled workflows that are at least as new as their process file."""

    fresh = 0
    stale: list[str] = []
    for rel in manifest.process_files:
        source = expert_dir / rel
        doc = read_markdown(source)
        name = process_name(rel, doc.frontmatter if doc else {})
        if is_stale(workflow_path(compiled_dir, manifest.name or "", name), source):
            stale.append(f"{manifest.name}/{name}")
        else:
            fresh += 1
    return Freshness(fresh=fresh, total=len(manifest.process_files), stale=stale)
