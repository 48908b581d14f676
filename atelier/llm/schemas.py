# FILE: atelier/llm/schemas.py
"""
Generation schemas: modes, messages, requests and typed results.

Version: 1.0.0

MODES:
- tutor: conversational answer, rendered as text
- builder: generated application code (single file or multi-file project)
- canvas: drawing/whiteboard session, answered as text

RESULT UNION (discriminated on `kind`):
- TextResult        - plain conversational answer
- SingleFileResult  - one renderable document plus optional explanation
- MultiFileResult   - a project: files + entry path
- ErrorResult       - any failure, never raised, always returned

All request/result/message models are frozen. A Message is never mutated
after creation; a GenerationRequest is a value handed to the gateway.
"""
from __future__ import annotations

import itertools
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class Mode(str, Enum):
    """Expected shape of a generation result."""
    TUTOR = "tutor"
    BUILDER = "builder"
    CANVAS = "canvas"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class FileType(str, Enum):
    """Kind of file inside a generated project."""
    PAGE = "page"
    COMPONENT = "component"
    STYLE = "style"
    CONFIG = "config"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> "FileType":
        """Map loose backend values ("Page", None, "script") onto the enum."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class ExpectedShape(str, Enum):
    """What the decoder should expect from raw backend text."""
    TEXT = "text"
    SINGLE_FILE = "single_file"
    MULTI_FILE = "multi_file"


class ErrorKind(str, Enum):
    """Failure taxonomy shared by gateway, decoder and orchestrator."""
    # Provider failures (drive the fallback chain)
    QUOTA_EXCEEDED = "quota_exceeded"
    PROMPT_TOO_LARGE = "prompt_too_large"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"

    # Decode failures (never retried)
    DECODE_FAILURE = "decode_failure"
    EMPTY_OUTPUT = "empty_output"
    PROVIDER_ERROR = "provider_error"

    # Rejected before any network call
    USER_INPUT = "user_input"
    BUSY = "busy"
    CANCELLED = "cancelled"


# =============================================================================
# MESSAGES
# =============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Attachment(BaseModel):
    """Plain-text attachment produced by an ingestion pipeline."""
    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    content: str
    mime_hint: Optional[str] = None


class Message(BaseModel):
    """
    One conversation turn.

    Ids are issued by a per-conversation MessageIdSequence, so ordering by id
    equals chronological order.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    role: Role
    content: str
    code: Optional[str] = None
    attachments: Tuple[Attachment, ...] = ()
    images: Tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=_utcnow)

    def with_content(self, content: str) -> "Message":
        """Copy of this message with different content (same id)."""
        return self.model_copy(update={"content": content})

    def render_for_history(self) -> str:
        """Text sent to a backend for this turn; code rides along with content."""
        if self.code:
            return f"{self.content}\n\nCode Generated:\n{self.code}"
        return self.content


class MessageIdSequence:
    """Monotonic message id source for one conversation."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self.last_issued: Optional[int] = None

    def next_id(self) -> int:
        self.last_issued = next(self._counter)
        return self.last_issued


# =============================================================================
# REQUEST
# =============================================================================

class GenerationRequest(BaseModel):
    """Immutable value passed to the provider gateway."""
    model_config = ConfigDict(frozen=True)

    prompt: str
    history: Tuple[Message, ...] = ()
    mode: Mode = Mode.TUTOR
    provider_id: str
    images: Tuple[str, ...] = ()
    framework_hint: Optional[str] = None
    reasoning: bool = False

    def formatted_history(self) -> List[Dict[str, str]]:
        """History in the role/text shape generation backends accept."""
        return [
            {
                "role": "user" if m.role == Role.USER else "model",
                "text": m.render_for_history(),
            }
            for m in self.history
        ]

    def for_provider(self, provider_id: str, history: Tuple[Message, ...]) -> "GenerationRequest":
        """Same request re-targeted at another provider/history."""
        return self.model_copy(update={"provider_id": provider_id, "history": tuple(history)})


# =============================================================================
# RESULTS
# =============================================================================

class GeneratedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    file_type: FileType = FileType.OTHER


class TextResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    content: str
    provider_id: Optional[str] = None


class SingleFileResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["single_file"] = "single_file"
    content: str
    explanation: str = ""
    provider_id: Optional[str] = None


class MultiFileResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["multi_file"] = "multi_file"
    files: Tuple[GeneratedFile, ...]
    entry_path: str
    framework: Optional[str] = None
    provider_id: Optional[str] = None


class ErrorResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["error"] = "error"
    error_kind: ErrorKind
    message: str
    provider_id: Optional[str] = None


GenerationResult = Annotated[
    Union[TextResult, SingleFileResult, MultiFileResult, ErrorResult],
    Field(discriminator="kind"),
]


def is_error(result: Any) -> bool:
    return isinstance(result, ErrorResult)


def tag_provider(result: Any, provider_id: Optional[str]) -> Any:
    """Stamp the provider that produced a result."""
    return result.model_copy(update={"provider_id": provider_id})


__all__ = [
    "Mode",
    "Role",
    "FileType",
    "ExpectedShape",
    "ErrorKind",
    "Attachment",
    "Message",
    "MessageIdSequence",
    "GenerationRequest",
    "GeneratedFile",
    "TextResult",
    "SingleFileResult",
    "MultiFileResult",
    "ErrorResult",
    "GenerationResult",
    "is_error",
    "tag_provider",
]
