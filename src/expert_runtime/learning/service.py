"""Approved learnings, one markdown file per scope.

Files live under ``<learnings_dir>/<expert>/``: ``_package.md`` for the
package-wide scope and ``<scope>.md`` otherwise. Each file has a small
frontmatter header followed by one ``### <title>`` block per entry::

    ### Prefer the billing contact
    - **Date**: 2026-01-14
    - **Source**: support-thread-88
    - **Observation**: ...
    - **Correction**: ...
    - **Confidence**: high

Files are capped: appending beyond the cap evicts the oldest entries.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from expert_runtime.fileio import write_atomic
from expert_runtime.spec.components import split_frontmatter

logger = logging.getLogger(__name__)

PACKAGE_SCOPE = "package"

Confidence = Literal["high", "medium", "low"]

_HEADING_RE = re.compile(r"^### (.+)$", re.MULTILINE)


def _today() -> str:
    return datetime.now(tz=UTC).date().isoformat()


class LearningEntry(BaseModel):
    title: str
    date: str = Field(default_factory=_today)
    source: str = ""
    observation: str = ""
    correction: str = ""
    confidence: Confidence = "medium"


class LearningProposal(LearningEntry):
    scope: str = PACKAGE_SCOPE

    def entry(self) -> LearningEntry:
        return LearningEntry.model_validate(self.model_dump(exclude={"scope"}))


def _bullet(block: str, key: str) -> str:
    match = re.search(rf"\*\*{key}\*\*: (.+)", block)
    return match.group(1).strip() if match else ""


def parse_entries(content: str) -> list[LearningEntry]:
    body = split_frontmatter(content).body
    headings = list(_HEADING_RE.finditer(body))
    entries: list[LearningEntry] = []
    for i, heading in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(body)
        block = body[heading.start() : end]
        title = heading.group(1).strip()
        if not title:
            continue
        confidence = _bullet(block, "Confidence")
        entries.append(
            LearningEntry(
                title=title,
                date=_bullet(block, "Date") or _today(),
                source=_bullet(block, "Source"),
                observation=_bullet(block, "Observation"),
                correction=_bullet(block, "Correction"),
                confidence=confidence if confidence in ("high", "medium", "low") else "medium",
            )
        )
    return entries


def render_entries(entries: list[LearningEntry], scope: str) -> str:
    header = f"---\nscope: {scope}\nentry_count: {len(entries)}\n---\n"
    blocks = [
        "\n".join(
            [
                f"### {e.title}",
                f"- **Date**: {e.date}",
                f"- **Source**: {e.source}",
                f"- **Observation**: {e.observation}",
                f"- **Correction**: {e.correction}",
                f"- **Confidence**: {e.confidence}",
            ]
        )
        for e in entries
    ]
    return f"{header}\n" + "\n\n".join(blocks) + "\n"


class LearningService:
    def __init__(self, root: Path) -> None:
        self.root = root
        self._lock = asyncio.Lock()

    def file_path(self, expert_name: str, scope: str) -> Path:
        file_name = "_package.md" if scope == PACKAGE_SCOPE else f"{scope}.md"
        return self.root / expert_name / file_name

    def _read_entries(self, path: Path) -> list[LearningEntry]:
        if not path.exists():
            return []
        return parse_entries(path.read_text(encoding="utf-8"))

    def _append(self, path: Path, entry: LearningEntry, scope: str, max_entries: int) -> int:
        kept = self._read_entries(path)[-(max_entries - 1) :] if max_entries > 1 else []
        kept.append(entry)
        write_atomic(path, render_entries(kept, scope))
        return len(kept)

    async def append_approved(
        self, expert_name: str, proposal: LearningProposal, max_entries: int
    ) -> int:
        """Append `proposal` to its scope file, keeping at most `max_entries`.

        Returns the number of entries now in the file.
        """

        path = self.file_path(expert_name, proposal.scope)
        async with self._lock:
            count = await asyncio.to_thread(
                self._append, path, proposal.entry(), proposal.scope, max(1, max_entries)
            )
        logger.info(
            "Learning recorded",
            extra={"expert": expert_name, "scope": proposal.scope, "entries": count},
        )
        return count

    async def entries(self, expert_name: str, scope: str) -> list[LearningEntry]:
        return await asyncio.to_thread(self._read_entries, self.file_path(expert_name, scope))

    def _load_scope(self, expert_name: str, scope: str) -> str:
        snippets: list[str] = []
        package_file = self.file_path(expert_name, PACKAGE_SCOPE)
        if package_file.exists():
            snippets.append(package_file.read_text(encoding="utf-8"))
        scope_file = self.file_path(expert_name, scope)
        if scope != PACKAGE_SCOPE and scope_file.exists():
            snippets.append(scope_file.read_text(encoding="utf-8"))
        return "\n\n".join(snippets)

    async def load_scope(self, expert_name: str, scope: str = PACKAGE_SCOPE) -> str:
        """Package learnings followed by the named scope's, as raw markdown."""

        return await asyncio.to_thread(self._load_scope, expert_name, scope)
