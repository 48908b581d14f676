# FILE: atelier/llm/fallbacks.py
"""
Retry-with-fallback combinator for generation calls.

Version: 1.0.0

One generic cascade, parameterised by an ordered list of strategies and an
error classifier. The orchestrator builds the list; nothing here knows about
specific providers.

FAILURE CLASSES:
- SIZE:  prompt too large for the backend
- QUOTA: credits/allowance exhausted, rate limited
- FATAL: unavailable, unknown (never escalated)

ESCALATION:
On a failure of class C, the next strategy (after the current one) whose
`handles` set contains C is tried. FATAL is handled by no strategy, so it
ends the cascade. At most MAX_FALLBACK_HOPS escalations per call.

Typical chain built by the orchestrator:
    1. requesting         provider P, full budget        (first attempt)
    2. retry_truncated    provider P, budget * 0.25      handles {SIZE}
    3. fallback_provider  fallback F, F's own budget     handles {SIZE, QUOTA}

Usage:
    from atelier.llm.fallbacks import FallbackStrategy, execute_with_fallback

    result = await execute_with_fallback(
        strategies=[primary, retry, fallback],
        operation=lambda s: call_gateway(s.provider_id, s.budget),
        classifier=classify_provider_failure,
    )
"""

import os
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .gateway import classify_exception
from .schemas import ErrorKind

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# Maximum escalations after the first attempt
MAX_FALLBACK_HOPS = int(os.getenv("ATELIER_MAX_FALLBACK_HOPS", "2"))


# =============================================================================
# FAILURE TYPES
# =============================================================================

class FailureClass(str, Enum):
    """How a failed attempt may be escalated."""
    SIZE = "size"
    QUOTA = "quota"
    FATAL = "fatal"


class FallbackAction(str, Enum):
    """What the cascade did after a failure."""
    ESCALATE = "escalate"       # moved on to another strategy
    ABORT = "abort"             # no strategy handles the failure
    EXHAUSTED = "exhausted"     # hop limit reached


def classify_provider_failure(exc: BaseException) -> FailureClass:
    """Default classifier: ProviderError kinds → failure classes."""
    kind = classify_exception(exc)
    if kind == ErrorKind.PROMPT_TOO_LARGE:
        return FailureClass.SIZE
    if kind == ErrorKind.QUOTA_EXCEEDED:
        return FailureClass.QUOTA
    return FailureClass.FATAL


# =============================================================================
# STRATEGIES AND RECORDS
# =============================================================================

@dataclass(frozen=True)
class FallbackStrategy:
    """One attempt in the cascade."""
    name: str
    provider_id: str
    budget: int
    handles: FrozenSet[FailureClass] = frozenset()


@dataclass
class FallbackEvent:
    """Record of one failed attempt and the reaction to it."""
    timestamp: datetime
    failure_class: FailureClass
    action_taken: FallbackAction
    strategy: str
    provider_id: str
    error_message: str = ""
    next_strategy: Optional[str] = None
    next_provider: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "failure_class": self.failure_class.value,
            "action_taken": self.action_taken.value,
            "strategy": self.strategy,
            "provider_id": self.provider_id,
            "error_message": self.error_message,
            "next_strategy": self.next_strategy,
            "next_provider": self.next_provider,
        }


@dataclass
class FallbackResult:
    """Outcome of execute_with_fallback."""
    success: bool
    value: Any = None
    final_strategy: Optional[FallbackStrategy] = None
    events: List[FallbackEvent] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def hops(self) -> int:
        return sum(1 for e in self.events if e.action_taken == FallbackAction.ESCALATE)

    @property
    def fallback_used(self) -> bool:
        return self.hops > 0

    @property
    def final_provider(self) -> Optional[str]:
        return self.final_strategy.provider_id if self.final_strategy else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "fallback_used": self.fallback_used,
            "hops": self.hops,
            "final_strategy": self.final_strategy.name if self.final_strategy else None,
            "final_provider": self.final_provider,
            "error": str(self.error) if self.error else None,
            "events": [e.to_dict() for e in self.events],
        }


def _next_handler(
    strategies: Sequence[FallbackStrategy],
    current: int,
    failure: FailureClass,
) -> Optional[int]:
    for index in range(current + 1, len(strategies)):
        if failure in strategies[index].handles:
            return index
    return None


# =============================================================================
# COMBINATOR
# =============================================================================

async def execute_with_fallback(
    strategies: Sequence[FallbackStrategy],
    operation: Callable[[FallbackStrategy], Awaitable[Any]],
    classifier: Callable[[BaseException], FailureClass] = classify_provider_failure,
    max_hops: int = MAX_FALLBACK_HOPS,
    on_escalate: Optional[Callable[[FallbackEvent, FallbackStrategy], None]] = None,
) -> FallbackResult:
    """
    Run operation against strategies[0], escalating on classified failures.

    Args:
        strategies: Ordered attempts; the first is always tried
        operation: Async callable(strategy) -> value; raises on failure
        classifier: Exception → FailureClass
        max_hops: Escalation limit
        on_escalate: Called before each escalated attempt

    Returns:
        FallbackResult (never raises for operation failures; cancellation
        propagates)
    """
    result = FallbackResult(success=False)
    if not strategies:
        return result

    index = 0
    hops = 0
    while True:
        strategy = strategies[index]
        try:
            value = await operation(strategy)
        except Exception as e:
            failure = classifier(e)
            result.error = e
            next_index = _next_handler(strategies, index, failure)

            if next_index is None:
                action = FallbackAction.ABORT
            elif hops >= max_hops:
                action = FallbackAction.EXHAUSTED
            else:
                action = FallbackAction.ESCALATE

            event = FallbackEvent(
                timestamp=datetime.now(timezone.utc),
                failure_class=failure,
                action_taken=action,
                strategy=strategy.name,
                provider_id=strategy.provider_id,
                error_message=str(e),
            )
            result.events.append(event)

            if action != FallbackAction.ESCALATE:
                log_fn = logger.error if action == FallbackAction.EXHAUSTED else logger.warning
                log_fn(f"[fallback] {strategy.name}@{strategy.provider_id} {failure.value}: {e} → {action.value}")
                result.final_strategy = strategy
                return result

            nxt = strategies[next_index]
            event.next_strategy = nxt.name
            event.next_provider = nxt.provider_id
            logger.warning(
                f"[fallback] {strategy.name}@{strategy.provider_id} {failure.value} "
                f"→ {nxt.name}@{nxt.provider_id} (budget={nxt.budget})"
            )
            if on_escalate is not None:
                on_escalate(event, nxt)
            index = next_index
            hops += 1
            continue

        result.success = True
        result.value = value
        result.final_strategy = strategy
        result.error = None
        logger.debug(f"[fallback] success with {strategy.name}@{strategy.provider_id} after {hops} hop(s)")
        return result


__all__ = [
    "MAX_FALLBACK_HOPS",
    "FailureClass",
    "FallbackAction",
    "FallbackStrategy",
    "FallbackEvent",
    "FallbackResult",
    "classify_provider_failure",
    "execute_with_fallback",
]
