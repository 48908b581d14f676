# FILE: atelier/llm/__init__.py
"""
LLM module exports.

v1.0.0: Classifier, truncator, decoder, gateway, fallback combinator.

The orchestrator depends on atelier.memory and atelier.project, which import
this package; import it from atelier.llm.orchestrator directly.
"""

# ============== SCHEMA EXPORTS ==============

from atelier.llm.schemas import (
    Mode,
    Role,
    FileType,
    ExpectedShape,
    ErrorKind,
    Attachment,
    Message,
    MessageIdSequence,
    GenerationRequest,
    GeneratedFile,
    TextResult,
    SingleFileResult,
    MultiFileResult,
    ErrorResult,
    GenerationResult,
)

# ============== PURE FUNCTIONS ==============

from atelier.llm.intent_classifier import classify, is_image_generation_request, effective_prompt
from atelier.llm.token_budgeting import estimate_tokens, truncate_history
from atelier.llm.response_decoder import decode, decode_build_output

# ============== GATEWAY / FALLBACK EXPORTS ==============

from atelier.llm.gateway import ProviderError, ProviderGateway, HttpProviderGateway, ScriptedGateway
from atelier.llm.fallbacks import FallbackStrategy, execute_with_fallback

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
    "classify",
    "is_image_generation_request",
    "effective_prompt",
    "estimate_tokens",
    "truncate_history",
    "decode",
    "decode_build_output",
    "ProviderError",
    "ProviderGateway",
    "HttpProviderGateway",
    "ScriptedGateway",
    "FallbackStrategy",
    "execute_with_fallback",
]
