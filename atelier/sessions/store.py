# FILE: atelier/sessions/store.py
"""
Persistence and usage ports used by the orchestrator, plus adapters.

PORTS:
- PersistenceStore: create_session / save_message / get_session_messages
- UsageTracker:     is_quota_exceeded / is_provider_exhausted / record_usage

ADAPTERS:
- SqlSessionStore, SqlUsageTracker: SQLAlchemy, one DB session per call
- InMemorySessionStore, InMemoryUsageTracker: process-local, for tests and
  single-user runs

USAGE ACCOUNTING:
- units are estimated tokens of generated output
- days are workspace-local (UTC+7 by default), midnight to midnight
- is_quota_exceeded(): the user's total for today reached DAILY_TOKEN_LIMIT
  (0 = unlimited)
- is_provider_exhausted(p): provider p has a daily_allowance and today's
  units on p reached it
"""

import os
import itertools
import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from sqlalchemy.orm import sessionmaker

from atelier.llm.schemas import Message, Role
from atelier.memory.conversation import workspace_timezone
from atelier.sessions import service
from config.providers import get_provider_profile

logger = logging.getLogger(__name__)

DAILY_TOKEN_LIMIT = int(os.getenv("ATELIER_DAILY_TOKEN_LIMIT", "0"))


# =============================================================================
# PORTS
# =============================================================================

@runtime_checkable
class PersistenceStore(Protocol):
    def create_session(self, user_id: str, mode: str, provider_id: str, title: str) -> int:
        ...

    def save_message(
        self,
        session_id: int,
        role: str,
        content: str,
        code: Optional[str] = None,
        images: Optional[Sequence[str]] = None,
    ) -> None:
        ...

    def get_session_messages(self, session_id: int) -> List[Message]:
        ...


@runtime_checkable
class UsageTracker(Protocol):
    def is_quota_exceeded(self) -> bool:
        ...

    def is_provider_exhausted(self, provider_id: str) -> bool:
        ...

    def record_usage(self, session_id: Optional[int], provider_id: str, units: int = 1) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _DayClock:
    """Workspace-local 'today' for usage accounting."""

    def __init__(self, tz: Optional[timezone] = None, clock: Callable[[], datetime] = _utcnow):
        self.tz = tz or workspace_timezone()
        self.clock = clock

    def today(self) -> date:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz).date()


def _allowance_reached(provider_id: str, used: int) -> bool:
    allowance = get_provider_profile(provider_id).daily_allowance
    return allowance > 0 and used >= allowance


# =============================================================================
# SQL ADAPTERS
# =============================================================================

class SqlSessionStore:
    """PersistenceStore over the chat_sessions / chat_messages tables."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create_session(self, user_id: str, mode: str, provider_id: str, title: str) -> int:
        with self._session_factory() as db:
            session = service.create_session(db, user_id, mode, provider_id, title)
            logger.info(f"[sessions] created session {session.id} for {user_id} ({mode}/{provider_id})")
            return session.id

    def save_message(
        self,
        session_id: int,
        role: str,
        content: str,
        code: Optional[str] = None,
        images: Optional[Sequence[str]] = None,
    ) -> None:
        with self._session_factory() as db:
            service.add_message(db, session_id, role, content, code=code, images=list(images or []))

    def get_session_messages(self, session_id: int) -> List[Message]:
        with self._session_factory() as db:
            rows = service.list_messages(db, session_id)
            return [
                Message(
                    id=row.id,
                    role=Role(row.role),
                    content=row.content,
                    code=row.code,
                    images=tuple(row.images or ()),
                    timestamp=row.created_at.replace(tzinfo=timezone.utc),
                )
                for row in rows
            ]


class SqlUsageTracker:
    """UsageTracker over the usage_records table for one user."""

    def __init__(
        self,
        session_factory: sessionmaker,
        user_id: str,
        daily_limit: int = DAILY_TOKEN_LIMIT,
        tz: Optional[timezone] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self.user_id = user_id
        self.daily_limit = daily_limit
        self._day = _DayClock(tz, clock)

    def units_today(self, provider_id: Optional[str] = None) -> int:
        with self._session_factory() as db:
            return service.units_used(db, self.user_id, self._day.today(), provider_id)

    def is_quota_exceeded(self) -> bool:
        return self.daily_limit > 0 and self.units_today() >= self.daily_limit

    def is_provider_exhausted(self, provider_id: str) -> bool:
        return _allowance_reached(provider_id, self.units_today(provider_id))

    def record_usage(self, session_id: Optional[int], provider_id: str, units: int = 1) -> None:
        with self._session_factory() as db:
            service.add_usage(db, self.user_id, provider_id, self._day.today(), max(0, units), session_id)
        logger.debug(f"[usage] {self.user_id} +{units} on {provider_id}")


# =============================================================================
# IN-MEMORY ADAPTERS
# =============================================================================

class InMemorySessionStore:
    def __init__(self):
        self._ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self.sessions: Dict[int, Dict[str, str]] = {}
        self.messages: Dict[int, List[Message]] = {}

    def create_session(self, user_id: str, mode: str, provider_id: str, title: str) -> int:
        session_id = next(self._ids)
        self.sessions[session_id] = {
            "user_id": user_id,
            "mode": mode,
            "provider_id": provider_id,
            "title": title,
        }
        self.messages[session_id] = []
        return session_id

    def save_message(
        self,
        session_id: int,
        role: str,
        content: str,
        code: Optional[str] = None,
        images: Optional[Sequence[str]] = None,
    ) -> None:
        self.messages.setdefault(session_id, []).append(Message(
            id=next(self._message_ids),
            role=Role(role),
            content=content,
            code=code,
            images=tuple(images or ()),
        ))

    def get_session_messages(self, session_id: int) -> List[Message]:
        return list(self.messages.get(session_id, []))


class InMemoryUsageTracker:
    def __init__(
        self,
        daily_limit: int = DAILY_TOKEN_LIMIT,
        tz: Optional[timezone] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.daily_limit = daily_limit
        self._day = _DayClock(tz, clock)
        self.records: List[Tuple[date, Optional[int], str, int]] = []

    def units_today(self, provider_id: Optional[str] = None) -> int:
        today = self._day.today()
        return sum(
            units for day, _, pid, units in self.records
            if day == today and (provider_id is None or pid == provider_id)
        )

    def is_quota_exceeded(self) -> bool:
        return self.daily_limit > 0 and self.units_today() >= self.daily_limit

    def is_provider_exhausted(self, provider_id: str) -> bool:
        return _allowance_reached(provider_id, self.units_today(provider_id))

    def record_usage(self, session_id: Optional[int], provider_id: str, units: int = 1) -> None:
        self.records.append((self._day.today(), session_id, provider_id, max(0, units)))


__all__ = [
    "DAILY_TOKEN_LIMIT",
    "PersistenceStore",
    "UsageTracker",
    "SqlSessionStore",
    "SqlUsageTracker",
    "InMemorySessionStore",
    "InMemoryUsageTracker",
]
