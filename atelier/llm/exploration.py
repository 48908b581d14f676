# FILE: atelier/llm/exploration.py
"""
Codebase exploration for builder edits.

Before a builder request against an existing project, the orchestrator asks
an Explorer for a short summary of that project. The summary rides along
with the prompt so the backend edits instead of starting over.

- bounded by EXPLORATION_TIMEOUT_S (15 s) via asyncio.wait_for
- timeout or explorer failure → minimal_summary() (file list only); never
  blocks or fails the generation
"""

import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from .token_budgeting import truncate_text

logger = logging.getLogger(__name__)

EXPLORATION_TIMEOUT_S = float(os.getenv("ATELIER_EXPLORATION_TIMEOUT_S", "15"))

# Estimated-token cap on the summary attached to a prompt
SUMMARY_TOKEN_BUDGET = int(os.getenv("ATELIER_EXPLORATION_SUMMARY_TOKENS", "1500"))

# Characters of the entry file quoted in the summary
ENTRY_EXCERPT_CHARS = 2000


@dataclass
class ExplorationOutcome:
    summary: str
    timed_out: bool = False
    failed: bool = False
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.timed_out or self.failed


# An Explorer takes the project's file manager and returns a summary
Explorer = Callable[[Any], Awaitable[str]]


def minimal_summary(file_manager) -> str:
    paths: List[str] = [f.path for f in file_manager.get_all_files()]
    entry = file_manager.get_entry()
    lines = [f"Existing project ({len(paths)} file(s)), entry: {entry or 'none'}"]
    lines.extend(f"- {p}" for p in paths)
    return "\n".join(lines)


async def summarize_project(file_manager) -> str:
    """Default explorer: framework, file listing with types, entry excerpt."""
    files = file_manager.get_all_files()
    entry = file_manager.get_entry()
    lines = [
        f"Framework: {file_manager.detect_framework()}",
        f"Entry: {entry or 'none'}",
        "Files:",
    ]
    for f in files:
        lines.append(f"- {f.path} [{f.file_type.value}, {len(f.content.splitlines())} lines]")

    entry_file = file_manager.get_file(entry) if entry else None
    if entry_file is not None and entry_file.content:
        excerpt = entry_file.content[:ENTRY_EXCERPT_CHARS]
        lines.append("")
        lines.append(f"Current {entry_file.path}:")
        lines.append(excerpt)

    return truncate_text("\n".join(lines), SUMMARY_TOKEN_BUDGET)


async def explore_codebase(
    file_manager,
    explorer: Explorer = summarize_project,
    timeout_s: float = EXPLORATION_TIMEOUT_S,
) -> ExplorationOutcome:
    """Run an explorer under a timeout, degrading to minimal_summary()."""
    try:
        summary = await asyncio.wait_for(explorer(file_manager), timeout=timeout_s)
        return ExplorationOutcome(summary=summary or minimal_summary(file_manager))
    except asyncio.TimeoutError:
        logger.warning(f"[exploration] timed out after {timeout_s}s, using minimal summary")
        return ExplorationOutcome(summary=minimal_summary(file_manager), timed_out=True)
    except Exception as e:
        logger.warning(f"[exploration] failed: {e}, using minimal summary")
        return ExplorationOutcome(summary=minimal_summary(file_manager), failed=True, error=str(e))


__all__ = [
    "EXPLORATION_TIMEOUT_S",
    "ExplorationOutcome",
    "Explorer",
    "explore_codebase",
    "minimal_summary",
    "summarize_project",
]
