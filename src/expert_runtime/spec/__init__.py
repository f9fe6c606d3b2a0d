"""Expert package declarations: manifest loading and static validation."""

from expert_runtime.spec.manifest import ExpertManifest, ExpertTrigger, load_manifest
from expert_runtime.spec.validator import (
    ValidationFinding,
    ValidationResult,
    render_report,
    validate_manifest,
)

__all__ = [
    "ExpertManifest",
    "ExpertTrigger",
    "ValidationFinding",
    "ValidationResult",
    "load_manifest",
    "render_report",
    "validate_manifest",
]
