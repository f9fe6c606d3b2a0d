"""Tool bindings: persistence, validation and the binding wizard."""

from expert_runtime.bindings.store import BindingFile, BindingStore, ToolBinding
from expert_runtime.bindings.validation import (
    validate_binding_reachability,
    validate_bindings,
)

__all__ = [
    "BindingFile",
    "BindingStore",
    "ToolBinding",
    "validate_binding_reachability",
    "validate_bindings",
]
