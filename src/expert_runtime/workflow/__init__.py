"""Workflow compilation and execution."""

from expert_runtime.workflow.compiler import CompileResult, compile_expert, compile_process
from expert_runtime.workflow.engine import EngineResult, SubprocessEngine, WorkflowEngine
from expert_runtime.workflow.executor import ProcessExecutor, RunOutcome
from expert_runtime.workflow.models import CompiledWorkflow, WorkflowStep, workflow_path

__all__ = [
    "CompileResult",
    "CompiledWorkflow",
    "EngineResult",
    "ProcessExecutor",
    "RunOutcome",
    "SubprocessEngine",
    "WorkflowEngine",
    "WorkflowStep",
    "compile_expert",
    "compile_process",
    "workflow_path",
]
