# atelier/sessions/models.py
"""
SQLAlchemy ORM models for workspace sessions.

- ChatSession: one conversation (mode, provider, title)
- ChatMessage: one persisted turn; code and images ride alongside content
- UsageRecord: one generation billed to a provider, stamped with the
  workspace-local day it counts against
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Date, JSON
from sqlalchemy.orm import relationship
from atelier.db import Base


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    mode = Column(String(20), nullable=False, default="tutor")
    provider_id = Column(String(50), nullable=False)
    title = Column(String(100), nullable=False, default="New chat")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    messages = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessage.id",
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("chat_sessions.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # "user" | "assistant"
    content = Column(Text, nullable=False)
    code = Column(Text, nullable=True)
    images = Column(JSON, nullable=True)
    provider_id = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    session = relationship("ChatSession", back_populates="messages")


class UsageRecord(Base):
    __tablename__ = "usage_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("chat_sessions.id"), nullable=True, index=True)
    provider_id = Column(String(50), nullable=False, index=True)
    usage_day = Column(Date, nullable=False, index=True)  # workspace-local date
    units = Column(Integer, nullable=False, default=1)  # estimated tokens
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
