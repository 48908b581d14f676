# FILE: atelier/sessions/service.py
"""
Session service layer: plain functions over a SQLAlchemy Session.
"""
from datetime import date
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from atelier.sessions import models

TITLE_MAX_CHARS = 30


def make_title(text: str) -> str:
    """Session title from the first prompt: 30 characters, ellipsis when cut."""
    text = " ".join((text or "").split())
    if not text:
        return "New chat"
    if len(text) <= TITLE_MAX_CHARS:
        return text
    return text[:TITLE_MAX_CHARS] + "..."


# ============== SESSION ==============

def create_session(db: Session, user_id: str, mode: str, provider_id: str, title: str) -> models.ChatSession:
    session = models.ChatSession(user_id=user_id, mode=mode, provider_id=provider_id, title=title)
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def get_session(db: Session, session_id: int) -> Optional[models.ChatSession]:
    return db.query(models.ChatSession).filter(models.ChatSession.id == session_id).first()


def list_sessions(db: Session, user_id: str) -> List[models.ChatSession]:
    return (
        db.query(models.ChatSession)
        .filter(models.ChatSession.user_id == user_id)
        .order_by(models.ChatSession.updated_at.desc(), models.ChatSession.id.desc())
        .all()
    )


def delete_session(db: Session, session_id: int) -> bool:
    session = get_session(db, session_id)
    if not session:
        return False
    db.delete(session)
    db.commit()
    return True


# ============== MESSAGE ==============

def add_message(
    db: Session,
    session_id: int,
    role: str,
    content: str,
    code: Optional[str] = None,
    images: Optional[List[str]] = None,
    provider_id: Optional[str] = None,
) -> models.ChatMessage:
    message = models.ChatMessage(
        session_id=session_id,
        role=role,
        content=content,
        code=code,
        images=list(images) if images else None,
        provider_id=provider_id,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def list_messages(db: Session, session_id: int) -> List[models.ChatMessage]:
    return (
        db.query(models.ChatMessage)
        .filter(models.ChatMessage.session_id == session_id)
        .order_by(models.ChatMessage.id.asc())
        .all()
    )


# ============== USAGE ==============

def add_usage(
    db: Session,
    user_id: str,
    provider_id: str,
    usage_day: date,
    units: int = 1,
    session_id: Optional[int] = None,
) -> models.UsageRecord:
    record = models.UsageRecord(
        user_id=user_id,
        session_id=session_id,
        provider_id=provider_id,
        usage_day=usage_day,
        units=units,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def units_used(db: Session, user_id: str, usage_day: date, provider_id: Optional[str] = None) -> int:
    query = db.query(func.coalesce(func.sum(models.UsageRecord.units), 0)).filter(
        models.UsageRecord.user_id == user_id,
        models.UsageRecord.usage_day == usage_day,
    )
    if provider_id is not None:
        query = query.filter(models.UsageRecord.provider_id == provider_id)
    return int(query.scalar() or 0)
