# FILE: atelier/memory/conversation.py
"""
Conversation Memory: the rolling window of recent turns sent as history.

Version: 1.0.0

WINDOW:
- ordered Messages, most recent last, capped at MAX_MESSAGES (20)
- oldest messages fall off first

DAILY RESET:
- cutoff RESET_TIME (12:00) in a fixed offset (UTC+7, WIB)
- reset when local(now) >= cutoff and last_reset_date != local(now).date()
- checked eagerly on every append and by run_reset_poller() (every 60 s)
- last_reset_date starts unset; the first check past a cutoff stamps it

QUOTA GATE:
- set_tokens_available(False) clears the window and drops appends until
  availability returns
"""

import os
import asyncio
import logging
from collections import deque
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Deque, List, Optional

from atelier.llm.schemas import Message

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

MAX_MESSAGES = int(os.getenv("ATELIER_MEMORY_MAX_MESSAGES", "20"))

# "HH:MM" wall-clock cutoff in the workspace timezone
RESET_TIME = os.getenv("ATELIER_MEMORY_RESET_TIME", "12:00")

# Workspace timezone as an hour offset from UTC
TZ_OFFSET_HOURS = float(os.getenv("ATELIER_TZ_OFFSET_HOURS", "7"))

POLL_INTERVAL_S = float(os.getenv("ATELIER_MEMORY_POLL_INTERVAL_S", "60"))


def parse_cutoff(value: str) -> time:
    hours, _, minutes = value.strip().partition(":")
    return time(int(hours), int(minutes or 0))


def workspace_timezone(offset_hours: float = TZ_OFFSET_HOURS) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationMemory:
    """Bounded, daily-reset window of conversation turns."""

    def __init__(
        self,
        max_messages: int = MAX_MESSAGES,
        cutoff: Optional[time] = None,
        tz: Optional[timezone] = None,
        last_reset_date: Optional[date] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.max_messages = max_messages
        self.cutoff = cutoff or parse_cutoff(RESET_TIME)
        self.tz = tz or workspace_timezone()
        self.last_reset_date = last_reset_date
        self.clock = clock
        self._messages: Deque[Message] = deque(maxlen=max_messages)
        self._tokens_available = True

    # =========================================================================
    # WINDOW
    # =========================================================================

    def append(self, message: Message, now: Optional[datetime] = None) -> bool:
        """Add a turn. Returns False when the quota gate dropped it."""
        self.maybe_reset(now or self.clock())
        if not self._tokens_available:
            logger.debug(f"[memory] tokens unavailable, dropped message {message.id}")
            return False
        self._messages.append(message)
        return True

    def snapshot(self) -> List[Message]:
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)

    # =========================================================================
    # DAILY RESET
    # =========================================================================

    def local_now(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)

    def maybe_reset(self, now: Optional[datetime] = None) -> bool:
        """Clear the window if today's cutoff has passed and no reset happened today."""
        local = self.local_now(now or self.clock())
        today = local.date()
        if local.time() < self.cutoff or self.last_reset_date == today:
            return False

        dropped = len(self._messages)
        self._messages.clear()
        self.last_reset_date = today
        logger.info(f"[memory] daily reset at {local.isoformat()} ({dropped} message(s) cleared)")
        return True

    # =========================================================================
    # QUOTA GATE
    # =========================================================================

    @property
    def tokens_available(self) -> bool:
        return self._tokens_available

    def set_tokens_available(self, available: bool) -> None:
        if not available and self._tokens_available:
            logger.info("[memory] tokens exhausted, clearing window")
        self._tokens_available = available
        if not available:
            self._messages.clear()


async def run_reset_poller(
    memory: ConversationMemory,
    interval_s: float = POLL_INTERVAL_S,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """Periodically apply the daily reset until stopped or cancelled."""
    stop = stop or asyncio.Event()
    while not stop.is_set():
        memory.maybe_reset()
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_s)
        except asyncio.TimeoutError:
            continue


__all__ = [
    "MAX_MESSAGES",
    "RESET_TIME",
    "ConversationMemory",
    "run_reset_poller",
    "parse_cutoff",
    "workspace_timezone",
]
