# FILE: atelier/sessions/schemas.py
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    mode: str
    provider_id: str
    title: str
    created_at: datetime
    updated_at: datetime


class ChatMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    role: str
    content: str
    code: Optional[str] = None
    images: Optional[List[str]] = None
    provider_id: Optional[str] = None
    created_at: datetime


class UsageOut(BaseModel):
    user_id: str
    day: date
    total: int
    by_provider: Dict[str, int]
