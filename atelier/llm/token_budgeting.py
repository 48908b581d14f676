# FILE: atelier/llm/token_budgeting.py
"""
Token Budget Management for conversation history.

Version: 1.0.0

Fits prior conversation turns into a provider's context budget before a
generation call.

BUDGET:
    available = total_budget - reserved_for_system_prompt - reserved_for_current_prompt

TRUNCATION RULES:
1. Walk history from most recent to oldest, accumulating estimated cost
2. Include a message only while the running total stays <= available
3. Stop at the first message that would overflow (result is always a suffix)
4. If nothing fits but budget remains, the newest message is cut to fit with
   a trailing marker instead of being dropped
5. available <= 0 â empty history

TOKEN ESTIMATION:
    estimate_tokens(text) = ceil(len(text) / 4)

This is an approximation, not a tokenizer. Callers pass a different
CostFunction when a backend's tokenizer diverges.

Usage:
    from atelier.llm.token_budgeting import truncate_history

    fitted = truncate_history(
        history,
        total_budget=16000,
        reserved_for_system_prompt=1500,
        reserved_for_current_prompt=estimate_tokens(prompt),
    )
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

from .schemas import Message

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# Characters per estimated token
CHARS_PER_TOKEN = 4

# Appended to a message that was cut to fit
TRUNCATION_MARKER = "\n...[truncated]..."

# Used instead when the full marker alone would not fit the budget
SHORT_TRUNCATION_MARKER = "…"

CostFunction = Callable[[str], int]


# =============================================================================
# TOKEN ESTIMATION
# =============================================================================

def estimate_tokens(text: str) -> int:
    """
    Estimate token count for text.

    Uses rough heuristic: ~4 characters per token, rounded up.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def message_cost(message: Message, cost_fn: CostFunction = estimate_tokens) -> int:
    """Cost of one turn as it is sent to a backend (content + generated code)."""
    return cost_fn(message.render_for_history())


def history_cost(history: Sequence[Message], cost_fn: CostFunction = estimate_tokens) -> int:
    return sum(message_cost(m, cost_fn) for m in history)


def available_budget(
    total_budget: int,
    reserved_for_system_prompt: int = 0,
    reserved_for_current_prompt: int = 0,
) -> int:
    return total_budget - reserved_for_system_prompt - reserved_for_current_prompt


# =============================================================================
# TRUNCATION
# =============================================================================

@dataclass
class TruncationReport:
    """What truncate_history did, for logging and events."""
    available: int
    kept: int = 0
    dropped: int = 0
    used_tokens: int = 0
    truncated_in_place: bool = False
    notes: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "available": self.available,
            "kept": self.kept,
            "dropped": self.dropped,
            "used_tokens": self.used_tokens,
            "truncated_in_place": self.truncated_in_place,
            "notes": self.notes,
        }


def _cut_to_fit(message: Message, budget: int, cost_fn: CostFunction) -> Message:
    """
    Cut a message's content so its cost (marker included) fits the budget.

    Code is dropped first; a cut message keeps only a content prefix. Tiny
    budgets get the short marker, then a bare prefix, so some of the newest
    turn survives whenever the budget is positive.
    """
    text = message.content
    for marker in (TRUNCATION_MARKER, SHORT_TRUNCATION_MARKER, ""):
        # Start from the char estimate, then shrink until the cost function agrees
        keep = max(0, budget * CHARS_PER_TOKEN - len(marker))
        keep = min(keep, len(text))
        while keep > 0 and cost_fn(text[:keep] + marker) > budget:
            keep -= max(1, (keep // 10))
        keep = max(0, keep)
        candidate = text[:keep] + marker
        if keep > 0 and cost_fn(candidate) <= budget:
            return message.model_copy(update={"content": candidate, "code": None})
    return message.model_copy(update={"content": text[:keep], "code": None})


def truncate_history_with_report(
    history: Sequence[Message],
    total_budget: int,
    reserved_for_system_prompt: int = 0,
    reserved_for_current_prompt: int = 0,
    cost_fn: CostFunction = estimate_tokens,
) -> "tuple[List[Message], TruncationReport]":
    """Truncate history and describe the outcome."""
    available = available_budget(total_budget, reserved_for_system_prompt, reserved_for_current_prompt)
    report = TruncationReport(available=available)

    if available <= 0 or not history:
        report.dropped = len(history)
        if available <= 0:
            report.notes.append("no budget available")
        return [], report

    kept: List[Message] = []
    used = 0
    for message in reversed(history):
        cost = message_cost(message, cost_fn)
        if used + cost > available:
            break
        kept.append(message)
        used += cost

    if not kept:
        newest = history[-1]
        cut = _cut_to_fit(newest, available, cost_fn)
        if cost_fn(cut.render_for_history()) <= available:
            kept.append(cut)
            used = cost_fn(cut.render_for_history())
            report.truncated_in_place = True
            report.notes.append(f"message {newest.id} cut to fit")

    kept.reverse()
    report.kept = len(kept)
    report.dropped = len(history) - len(kept)
    report.used_tokens = used

    logger.debug(
        f"[token_budget] available={available} kept={report.kept} "
        f"dropped={report.dropped} used={used} in_place={report.truncated_in_place}"
    )
    return kept, report


def truncate_history(
    history: Sequence[Message],
    total_budget: int,
    reserved_for_system_prompt: int = 0,
    reserved_for_current_prompt: int = 0,
    cost_fn: CostFunction = estimate_tokens,
) -> List[Message]:
    """
    Fit history into a budget.

    Args:
        history: Ordered messages, oldest first
        total_budget: Provider history budget (estimated tokens)
        reserved_for_system_prompt: Tokens held back for the system prompt
        reserved_for_current_prompt: Tokens held back for the new prompt
        cost_fn: Token estimator, swappable per backend

    Returns:
        A suffix of history (order preserved) fitting the available budget
    """
    kept, _ = truncate_history_with_report(
        history,
        total_budget,
        reserved_for_system_prompt,
        reserved_for_current_prompt,
        cost_fn,
    )
    return kept


def truncate_text(text: str, max_tokens: int, cost_fn: CostFunction = estimate_tokens) -> str:
    """Cut free text (e.g. an exploration summary) to a token budget."""
    if not text or cost_fn(text) <= max_tokens:
        return text or ""
    max_chars = max(0, max_tokens * CHARS_PER_TOKEN - len(TRUNCATION_MARKER))
    return text[:max_chars] + TRUNCATION_MARKER


__all__ = [
    "CHARS_PER_TOKEN",
    "TRUNCATION_MARKER",
    "SHORT_TRUNCATION_MARKER",
    "CostFunction",
    "TruncationReport",
    "estimate_tokens",
    "message_cost",
    "history_cost",
    "available_budget",
    "truncate_history",
    "truncate_history_with_report",
    "truncate_text",
]
