# FILE: atelier/sessions/router.py
"""
Read/delete access to persisted chat sessions and today's usage.

Sessions are written by the orchestrator through SqlSessionStore; this
router only exposes them.
"""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from atelier.db import get_db
from atelier.memory.conversation import workspace_timezone
from atelier.sessions import schemas, service
from config.providers import list_providers

router = APIRouter(prefix="/sessions", tags=["sessions"])


# ============== USAGE ==============

@router.get("/usage/{user_id}", response_model=schemas.UsageOut)
def usage_today(user_id: str, db: Session = Depends(get_db)):
    today = datetime.now(workspace_timezone()).date()
    by_provider = {p: service.units_used(db, user_id, today, p) for p in list_providers()}
    return schemas.UsageOut(
        user_id=user_id,
        day=today,
        total=service.units_used(db, user_id, today),
        by_provider={p: units for p, units in by_provider.items() if units},
    )


# ============== SESSIONS ==============

@router.get("", response_model=List[schemas.SessionOut])
def list_sessions(user_id: str, db: Session = Depends(get_db)):
    return service.list_sessions(db, user_id)


@router.get("/{session_id}", response_model=schemas.SessionOut)
def get_session(session_id: int, db: Session = Depends(get_db)):
    session = service.get_session(db, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.get("/{session_id}/messages", response_model=List[schemas.ChatMessageOut])
def list_messages(session_id: int, db: Session = Depends(get_db)):
    if not service.get_session(db, session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return service.list_messages(db, session_id)


@router.delete("/{session_id}", status_code=204)
def delete_session(session_id: int, db: Session = Depends(get_db)):
    if not service.delete_session(db, session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return None
