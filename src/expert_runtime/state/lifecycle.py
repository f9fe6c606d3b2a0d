"""Per-expert working state copied from the package's ``state/`` templates.

Templates are copied once, on first activation. Before every run, files whose
frontmatter declares ``scope: session`` are reset to their template content;
everything else persists across runs.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from expert_runtime.spec.components import split_frontmatter

logger = logging.getLogger(__name__)


def state_dir(state_root: Path, expert_name: str) -> Path:
    return state_root / expert_name / "state"


def initialize_state_templates(expert_dir: Path, state_root: Path, expert_name: str) -> bool:
    """Copy templates into the working state dir unless it already exists."""

    source = expert_dir / "state"
    target = state_dir(state_root, expert_name)
    if not source.is_dir() or target.exists():
        return False
    shutil.copytree(source, target)
    logger.info("State templates initialized", extra={"expert": expert_name, "path": str(target)})
    return True


def is_session_scoped(content: str) -> bool:
    return split_frontmatter(content).frontmatter.get("scope") == "session"


def reset_session_state(expert_dir: Path, state_root: Path, expert_name: str) -> list[str]:
    """Rewrite session-scoped files from their templates. Returns the reset names."""

    source = expert_dir / "state"
    target = state_dir(state_root, expert_name)
    if not source.is_dir() or not target.is_dir():
        return []

    reset: list[str] = []
    for template in sorted(source.iterdir()):
        if not template.is_file():
            continue
        content = template.read_text(encoding="utf-8")
        if is_session_scoped(content):
            (target / template.name).write_text(content, encoding="utf-8")
            reset.append(template.name)
    return reset


def ensure_scratch_dir(state_root: Path, expert_name: str) -> Path:
    path = state_root / expert_name / "scratch"
    path.mkdir(parents=True, exist_ok=True)
    return path
