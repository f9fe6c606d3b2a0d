from expert_runtime.learning.service import (
    PACKAGE_SCOPE,
    LearningEntry,
    LearningProposal,
    LearningService,
)

__all__ = ["PACKAGE_SCOPE", "LearningEntry", "LearningProposal", "LearningService"]
