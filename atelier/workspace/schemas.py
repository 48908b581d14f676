# FILE: atelier/workspace/schemas.py
"""
Workspace API Pydantic schemas.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from atelier.llm.schemas import Attachment, FileType, GenerationResult, Mode


# ============== WORKSPACE ==============

class WorkspaceCreate(BaseModel):
    provider_id: Optional[str] = None
    user_id: Optional[str] = None


class WorkspaceOut(BaseModel):
    workspace_id: str
    provider_id: str
    session_id: Optional[int] = None
    state: str


class ProviderSelect(BaseModel):
    provider_id: str


# ============== GENERATION ==============

class AttachmentIn(BaseModel):
    kind: str = "document"
    name: str
    content: str
    mime_hint: Optional[str] = None

    def to_attachment(self) -> Attachment:
        return Attachment(kind=self.kind, name=self.name, content=self.content, mime_hint=self.mime_hint)


class SubmitRequest(BaseModel):
    text: str = ""
    images: List[str] = Field(default_factory=list)
    attachments: List[AttachmentIn] = Field(default_factory=list)
    mode: Optional[Mode] = None


class SubmitResponse(BaseModel):
    result: GenerationResult
    mode: Optional[Mode] = None
    final_state: Optional[str] = None
    requested_provider: Optional[str] = None
    provider_id: Optional[str] = None
    build_log: List[str] = Field(default_factory=list)
    version_id: Optional[int] = None
    session_id: Optional[int] = None
    events: List[Dict[str, Any]] = Field(default_factory=list)


class CancelOut(BaseModel):
    cancelled: bool
    state: str


class MessageOut(BaseModel):
    id: int
    role: str
    content: str
    code: Optional[str] = None
    timestamp: datetime


# ============== FILES ==============

class FileIn(BaseModel):
    content: str
    file_type: Optional[FileType] = None


class FileOut(BaseModel):
    path: str
    content: str
    file_type: FileType
    last_modified: datetime


class ProjectOut(BaseModel):
    files: List[Dict[str, Any]]
    entry: Optional[str] = None
    framework: str
    tree: Dict[str, Any] = Field(default_factory=dict)


class EntryIn(BaseModel):
    path: str


class EntryOut(BaseModel):
    entry: Optional[str] = None


# ============== VERSIONS ==============

class VersionOut(BaseModel):
    id: int
    timestamp: datetime
    message: Optional[str] = None
    paths: List[str]


class DiffOut(BaseModel):
    added: List[str]
    removed: List[str]
    modified: List[str]
