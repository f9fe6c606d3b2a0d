"""Expert Runtime.

Validates expert packages, binds their abstract tools, compiles process
checklists into approval-gated workflows, and runs them with retry and
pause/resume around human approvals.
"""

__version__ = "0.1.0"

from expert_runtime.runtime.config import RuntimeSettings

__all__ = ["__version__", "RuntimeSettings"]
