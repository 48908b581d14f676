# FILE: atelier/llm/gateway.py
"""
Provider gateway: the single seam between the orchestrator and AI backends.

Version: 1.0.0

CONTRACT:
    await gateway.generate(request) -> str        (raw backend text)
    raises ProviderError(kind, message) with kind in
        QUOTA_EXCEEDED | PROMPT_TOO_LARGE | UNAVAILABLE | UNKNOWN

Implementations:
- HttpProviderGateway: POSTs the request to a generation endpoint
  (ATELIER_GENERATION_URL) with httpx.AsyncClient
- ScriptedGateway: replays canned responses/errors (tests, demos)

Gateways that surface plain exceptions are mapped with classify_exception(),
which reads status codes and error text ("credit", "429", "context length").
"""

import os
import re
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable

import httpx

from .schemas import ErrorKind, GenerationRequest

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

GENERATION_URL = os.getenv("ATELIER_GENERATION_URL", "http://localhost:8787/api/generate")
GENERATION_API_KEY = os.getenv("ATELIER_GENERATION_API_KEY", "")
GENERATION_TIMEOUT_S = float(os.getenv("ATELIER_GENERATION_TIMEOUT_S") or "120")

PROVIDER_ERROR_KINDS = (
    ErrorKind.QUOTA_EXCEEDED,
    ErrorKind.PROMPT_TOO_LARGE,
    ErrorKind.UNAVAILABLE,
    ErrorKind.UNKNOWN,
)


# =============================================================================
# ERRORS
# =============================================================================

class ProviderError(Exception):
    """Typed backend failure raised by every gateway."""

    def __init__(self, kind: ErrorKind, message: str = ""):
        if kind not in PROVIDER_ERROR_KINDS:
            kind = ErrorKind.UNKNOWN
        self.kind = kind
        self.message = message or kind.value
        super().__init__(f"{self.kind.value}: {self.message}")


_QUOTA_HINTS = re.compile(
    r"\b(credit|credits|quota|insufficient|billing|payment required|rate.?limit|too many requests|429|402)\b",
    re.IGNORECASE,
)
_TOO_LARGE_HINTS = re.compile(
    r"(too large|too long|context.length|context.window|maximum context|max.tokens|token limit|413|payload too large)",
    re.IGNORECASE,
)
_UNAVAILABLE_HINTS = re.compile(
    r"\b(unavailable|overloaded|timeout|timed out|connection|503|502|504|bad gateway)\b",
    re.IGNORECASE,
)


def classify_error_text(text: str) -> ErrorKind:
    """Map free-form error text onto a provider error kind."""
    text = text or ""
    if _TOO_LARGE_HINTS.search(text):
        return ErrorKind.PROMPT_TOO_LARGE
    if _QUOTA_HINTS.search(text):
        return ErrorKind.QUOTA_EXCEEDED
    if _UNAVAILABLE_HINTS.search(text):
        return ErrorKind.UNAVAILABLE
    return ErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorKind:
    """Provider error kind for any exception raised by a backend call."""
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError)):
        return ErrorKind.UNAVAILABLE
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code, exc.response.text)
    return classify_error_text(str(exc))


def classify_status(status_code: int, body: str = "") -> ErrorKind:
    if status_code == 413:
        return ErrorKind.PROMPT_TOO_LARGE
    if status_code in (402, 429):
        return ErrorKind.QUOTA_EXCEEDED
    if status_code in (502, 503, 504):
        return ErrorKind.UNAVAILABLE
    if status_code == 400 and _TOO_LARGE_HINTS.search(body or ""):
        return ErrorKind.PROMPT_TOO_LARGE
    return classify_error_text(body)


# =============================================================================
# PORT
# =============================================================================

@runtime_checkable
class ProviderGateway(Protocol):
    async def generate(self, request: GenerationRequest) -> str:
        ...


# =============================================================================
# HTTP GATEWAY
# =============================================================================

def build_payload(request: GenerationRequest) -> Dict[str, Any]:
    """Request body sent to the generation endpoint."""
    return {
        "prompt": request.prompt,
        "history": request.formatted_history(),
        "mode": request.mode.value,
        "provider": request.provider_id,
        "images": list(request.images),
        "reasoning": request.reasoning,
        "framework": request.framework_hint,
    }


def _extract_text(resp: httpx.Response) -> str:
    content_type = resp.headers.get("content-type", "")
    if "application/json" not in content_type:
        return resp.text
    data = resp.json()
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        for key in ("text", "content", "code", "answer", "output"):
            value = data.get(key)
            if isinstance(value, str):
                return value
    # Structured payloads (multi-file projects) go to the decoder as JSON text
    return resp.text


class HttpProviderGateway:
    """
    Gateway posting GenerationRequests to one HTTP generation endpoint.

    The endpoint fans out to the concrete backend named by `provider`.
    Non-2xx responses and transport errors become ProviderError.
    """

    def __init__(
        self,
        url: str = GENERATION_URL,
        api_key: str = GENERATION_API_KEY,
        timeout_s: float = GENERATION_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout_s = timeout_s
        self._transport = transport
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    async def generate(self, request: GenerationRequest) -> str:
        payload = build_payload(request)
        logger.debug(
            f"[gateway] POST {self.url} provider={request.provider_id} "
            f"mode={request.mode.value} history={len(request.history)}"
        )
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s),
                transport=self._transport,
            ) as client:
                resp = await client.post(self.url, headers=self._headers, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"[gateway] transport error for {request.provider_id}: {e}")
            raise ProviderError(ErrorKind.UNAVAILABLE, str(e) or type(e).__name__) from e

        if resp.status_code >= 400:
            body = resp.text
            kind = classify_status(resp.status_code, body)
            logger.warning(f"[gateway] {request.provider_id} HTTP {resp.status_code} → {kind.value}")
            raise ProviderError(kind, body[:500] or f"HTTP {resp.status_code}")

        try:
            return _extract_text(resp)
        except ValueError as e:
            raise ProviderError(ErrorKind.UNKNOWN, f"Unreadable response body: {e}") from e


# =============================================================================
# SCRIPTED GATEWAY
# =============================================================================

ScriptItem = Union[str, BaseException]


class ScriptedGateway:
    """
    Gateway replaying a fixed script.

    script is either a sequence consumed in call order, or a mapping of
    provider_id → sequence. Exceptions in the script are raised. Every
    received request is kept in `requests`.
    """

    def __init__(
        self,
        script: Union[Sequence[ScriptItem], Dict[str, Sequence[ScriptItem]]],
        delay_s: float = 0.0,
    ):
        if isinstance(script, dict):
            self._by_provider = {k: list(v) for k, v in script.items()}
            self._queue: Optional[List[ScriptItem]] = None
        else:
            self._by_provider = {}
            self._queue = list(script)
        self.delay_s = delay_s
        self.requests: List[GenerationRequest] = []

    def _next_item(self, provider_id: str) -> ScriptItem:
        queue = self._queue if self._queue is not None else self._by_provider.get(provider_id)
        if not queue:
            raise ProviderError(ErrorKind.UNAVAILABLE, f"No scripted response for {provider_id}")
        return queue.pop(0)

    async def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        item = self._next_item(request.provider_id)
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def providers_called(self) -> List[str]:
        return [r.provider_id for r in self.requests]


__all__ = [
    "ProviderError",
    "ProviderGateway",
    "HttpProviderGateway",
    "ScriptedGateway",
    "build_payload",
    "classify_exception",
    "classify_error_text",
    "classify_status",
]
