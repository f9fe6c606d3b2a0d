"""Exception taxonomy shared across the runtime.

Structural errors abort the current operation and are never retried. Content
problems in a package are reported as validation findings instead (see
:mod:`expert_runtime.spec.validator`).
"""

from __future__ import annotations


class ExpertRuntimeError(Exception):
    """Base class for every error raised by the runtime."""


class StructuralError(ExpertRuntimeError):
    """A required artefact is missing or unreadable."""


class ManifestMissing(StructuralError):
    pass


class ManifestInvalid(StructuralError):
    pass


class ExpertNotFound(StructuralError):
    pass


class BindingsInvalid(StructuralError):
    """A bindings file exists but cannot be parsed; it is left untouched."""


class WorkflowNotFound(StructuralError):
    """No compiled workflow exists for the requested process."""


class ApprovalNotFound(ExpertRuntimeError):
    pass


class ActivationBlocked(ExpertRuntimeError):
    """Validation reported errors, so the expert cannot be activated."""


class TriggerConfigError(ExpertRuntimeError):
    pass


class ToolNotFound(ExpertRuntimeError):
    """The engine could not find a callable under the attempted name."""
