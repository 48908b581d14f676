# FILE: tests/conftest.py
"""
Pytest configuration for the Atelier test suite.

Configures:
- pytest-asyncio for async test support
- shared builders for messages and fixed clocks
"""
import sys
from pathlib import Path
from datetime import datetime, timezone

import pytest

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def make_message():
    """Factory for Messages with sequential ids."""
    from atelier.llm.schemas import Message, Role

    counter = {"next": 1}

    def _make(content: str, role: Role = Role.USER, code=None):
        msg = Message(id=counter["next"], role=role, content=content, code=code)
        counter["next"] += 1
        return msg

    return _make


@pytest.fixture
def fixed_clock():
    """Clock pinned to 2026-10-19 03:00 UTC (10:00 WIB, before the noon cutoff)."""
    return lambda: datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_engine():
    """In-memory SQLite shared across threads (TestClient runs sync routes in a pool)."""
    from sqlalchemy import create_engine
    from sqlalchemy.pool import StaticPool
    from atelier.db import Base
    from atelier.sessions import models  # noqa: F401

    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from sqlalchemy.orm import sessionmaker
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
