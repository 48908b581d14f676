# FILE: atelier/llm/orchestrator.py
"""
Generation Orchestrator: one submission from raw text to applied result.

Version: 1.0.0

STATE MACHINE (pure next_state(state, event), illegal moves raise):

    IDLE ──submit──▶ CLASSIFYING ──explore──▶ EXPLORING ──explored──▶ REQUESTING
                         │  └──resolved──────────────────────────────▶ REQUESTING
                         └──no_request──▶ SUCCESS   (bare canvas trigger)

    REQUESTING      ──prompt_too_large──▶ RETRY_TRUNCATED   (same provider, budget × 0.25)
    REQUESTING      ──quota_exceeded────▶ FALLBACK_PROVIDER (fallback provider, own budget)
    RETRY_TRUNCATED ──too_large|quota───▶ FALLBACK_PROVIDER
    any request state ──raw_received──▶ DECODING ──decoded──▶ SUCCESS
                      ──provider_failed─▶ FAILED       DECODING ──decode_failed──▶ FAILED
    pre-response states ──cancel──▶ CANCELLED
    SUCCESS | FAILED | CANCELLED ──reset──▶ IDLE

RULES:
- one generation in flight; a second submit gets ErrorResult(BUSY), never queued
- empty text with nothing attached → ErrorResult(USER_INPUT), no gateway call
- unavailable / unknown provider errors fail immediately (no fallback)
- at most two escalation hops (execute_with_fallback)
- cancel() works until the gateway result resolves; decode + apply always
  run to completion
- every result is stamped with the provider that produced it

SIDE EFFECTS ON SUCCESS:
- user + assistant turns appended to ConversationMemory (quota gated)
- builder results applied to the FileManager and snapshotted in the VersionStore
- messages persisted, usage recorded (both optional collaborators)

Usage:
    orchestrator = GenerationOrchestrator(gateway, OrchestratorConfig.from_env())
    result = await orchestrator.submit("buat landing page SaaS modern")
"""

import os
import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from config.providers import (
    DEFAULT_PROVIDER,
    FALLBACK_PROVIDER,
    RETRY_BUDGET_RATIO,
    VISION_PROVIDER,
    get_history_budget,
    get_provider_profile,
)

from atelier.memory.conversation import ConversationMemory
from atelier.project.file_manager import FileManager
from atelier.project.version_store import VersionStore
from atelier.sessions.service import make_title

from .exploration import EXPLORATION_TIMEOUT_S, ExplorationOutcome, Explorer, explore_codebase, summarize_project
from .fallbacks import (
    MAX_FALLBACK_HOPS,
    FailureClass,
    FallbackEvent,
    FallbackResult,
    FallbackStrategy,
    classify_provider_failure,
    execute_with_fallback,
)
from .gateway import ProviderGateway, classify_exception
from .intent_classifier import effective_prompt, explain_classification, is_image_generation_request
from .response_decoder import decode, decode_build_output
from .schemas import (
    Attachment,
    ErrorKind,
    ErrorResult,
    ExpectedShape,
    GenerationRequest,
    Message,
    MessageIdSequence,
    Mode,
    MultiFileResult,
    Role,
    SingleFileResult,
    TextResult,
    is_error,
    tag_provider,
)
from .token_budgeting import estimate_tokens, truncate_history_with_report

logger = logging.getLogger(__name__)


# =============================================================================
# STATE MACHINE
# =============================================================================

class OrchestratorState(str, Enum):
    IDLE = "idle"
    CLASSIFYING = "classifying"
    EXPLORING = "exploring"
    REQUESTING = "requesting"
    RETRY_TRUNCATED = "retry_truncated"
    FALLBACK_PROVIDER = "fallback_provider"
    DECODING = "decoding"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OrchestratorEvent(str, Enum):
    SUBMIT = "submit"
    EXPLORE = "explore"
    EXPLORED = "explored"
    RESOLVED = "resolved"
    NO_REQUEST = "no_request"
    PROMPT_TOO_LARGE = "prompt_too_large"
    QUOTA_EXCEEDED = "quota_exceeded"
    PROVIDER_FAILED = "provider_failed"
    RAW_RECEIVED = "raw_received"
    DECODED = "decoded"
    DECODE_FAILED = "decode_failed"
    CANCEL = "cancel"
    RESET = "reset"


class InvalidTransitionError(Exception):
    def __init__(self, state: OrchestratorState, event: OrchestratorEvent):
        self.state = state
        self.event = event
        super().__init__(f"No transition from {state.value} on {event.value}")


class UserInputError(ValueError):
    """Submission rejected before any backend call."""


_S = OrchestratorState
_E = OrchestratorEvent

_REQUEST_STATES = (_S.REQUESTING, _S.RETRY_TRUNCATED, _S.FALLBACK_PROVIDER)
_CANCELLABLE_STATES = (_S.CLASSIFYING, _S.EXPLORING) + _REQUEST_STATES
TERMINAL_STATES = (_S.SUCCESS, _S.FAILED, _S.CANCELLED)

TRANSITIONS: Dict[Tuple[OrchestratorState, OrchestratorEvent], OrchestratorState] = {
    (_S.IDLE, _E.SUBMIT): _S.CLASSIFYING,
    (_S.CLASSIFYING, _E.EXPLORE): _S.EXPLORING,
    (_S.CLASSIFYING, _E.RESOLVED): _S.REQUESTING,
    (_S.CLASSIFYING, _E.NO_REQUEST): _S.SUCCESS,
    (_S.EXPLORING, _E.EXPLORED): _S.REQUESTING,
    (_S.REQUESTING, _E.PROMPT_TOO_LARGE): _S.RETRY_TRUNCATED,
    (_S.REQUESTING, _E.QUOTA_EXCEEDED): _S.FALLBACK_PROVIDER,
    (_S.RETRY_TRUNCATED, _E.PROMPT_TOO_LARGE): _S.FALLBACK_PROVIDER,
    (_S.RETRY_TRUNCATED, _E.QUOTA_EXCEEDED): _S.FALLBACK_PROVIDER,
    (_S.DECODING, _E.DECODED): _S.SUCCESS,
    (_S.DECODING, _E.DECODE_FAILED): _S.FAILED,
}
for _state in _REQUEST_STATES:
    TRANSITIONS[(_state, _E.RAW_RECEIVED)] = _S.DECODING
    TRANSITIONS[(_state, _E.PROVIDER_FAILED)] = _S.FAILED
for _state in _CANCELLABLE_STATES:
    TRANSITIONS[(_state, _E.CANCEL)] = _S.CANCELLED
for _state in TERMINAL_STATES:
    TRANSITIONS[(_state, _E.RESET)] = _S.IDLE


def next_state(state: OrchestratorState, event: OrchestratorEvent) -> OrchestratorState:
    """Pure transition function."""
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event) from None


_FAILURE_EVENTS = {
    FailureClass.SIZE: _E.PROMPT_TOO_LARGE,
    FailureClass.QUOTA: _E.QUOTA_EXCEEDED,
}


# =============================================================================
# CONFIGURATION
# =============================================================================

def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Workflow settings injected at construction."""
    provider_id: str = DEFAULT_PROVIDER
    fallback_provider_id: str = FALLBACK_PROVIDER
    vision_provider_id: str = VISION_PROVIDER
    retry_budget_ratio: float = RETRY_BUDGET_RATIO
    exploration_enabled: bool = True
    exploration_timeout_s: float = EXPLORATION_TIMEOUT_S
    reasoning: bool = False
    max_fallback_hops: int = MAX_FALLBACK_HOPS
    user_id: str = "local"

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        return cls(
            provider_id=os.getenv("ATELIER_PROVIDER", DEFAULT_PROVIDER),
            exploration_enabled=_env_flag("ATELIER_EXPLORATION_ENABLED", "1"),
            reasoning=_env_flag("ATELIER_REASONING", "0"),
            user_id=os.getenv("ATELIER_USER_ID", "local"),
        )

    def with_provider(self, provider_id: str) -> "OrchestratorConfig":
        return replace(self, provider_id=provider_id)


# =============================================================================
# EVENTS AND OUTCOME
# =============================================================================

@dataclass
class GenerationEvent:
    """Something observable that happened during a submission."""
    kind: str                       # state | classified | routing | truncation | fallback | exploration | build_log | persistence
    state: OrchestratorState
    detail: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "state": self.state.value,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class GenerationOutcome:
    """Everything one submission produced, for callers and the HTTP layer."""
    result: Any = None
    mode: Optional[Mode] = None
    final_state: OrchestratorState = OrchestratorState.IDLE
    requested_provider: Optional[str] = None
    provider_id: Optional[str] = None
    events: List[GenerationEvent] = field(default_factory=list)
    build_log: List[str] = field(default_factory=list)
    user_message: Optional[str] = None
    version_id: Optional[int] = None
    session_id: Optional[int] = None
    image_generation_request: bool = False
    fallback: Optional[FallbackResult] = None
    exploration: Optional[ExplorationOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.model_dump(mode="json") if self.result is not None else None,
            "mode": self.mode.value if self.mode else None,
            "final_state": self.final_state.value,
            "requested_provider": self.requested_provider,
            "provider_id": self.provider_id,
            "build_log": self.build_log,
            "user_message": self.user_message,
            "version_id": self.version_id,
            "session_id": self.session_id,
            "image_generation_request": self.image_generation_request,
            "fallback": self.fallback.to_dict() if self.fallback else None,
            "events": [e.to_dict() for e in self.events],
        }


# =============================================================================
# USER-FACING TEXT
# =============================================================================

CANVAS_READY_MESSAGE = "Canvas is ready. Draw or write on the board, then ask your question."
BUILD_COMPLETE_LINE = "> Code generation complete."
EXISTING_PROJECT_HEADER = "Existing project (edit it, keep what still applies):"

_FRIENDLY_REASONS = {
    ErrorKind.QUOTA_EXCEEDED: "The AI service has run out of credits for now.",
    ErrorKind.PROMPT_TOO_LARGE: "Our conversation got too long for the AI to read in one go.",
    ErrorKind.UNAVAILABLE: "The AI service is not responding at the moment.",
    ErrorKind.UNKNOWN: "Something unexpected went wrong while talking to the AI service.",
    ErrorKind.DECODE_FAILURE: "The answer came back in a shape I could not read.",
    ErrorKind.EMPTY_OUTPUT: "The answer came back empty.",
    ErrorKind.PROVIDER_ERROR: "The AI service reported an error.",
}

_FRIENDLY_TIPS = [
    "Wait a moment and send your message again",
    "Start a new chat so the conversation is shorter",
    "Pick a different model in the model selector",
]


def friendly_failure_message(kind: ErrorKind, detail: str = "") -> str:
    """Multi-line explanation for tutor and canvas users."""
    reason = _FRIENDLY_REASONS.get(kind, _FRIENDLY_REASONS[ErrorKind.UNKNOWN])
    lines = ["Sorry, I couldn't finish that answer.", "", f"What happened: {reason}"]
    if kind == ErrorKind.PROVIDER_ERROR and detail:
        lines.append(f"Details: {detail[:300]}")
    lines.append("")
    lines.append("What you can try:")
    lines.extend(f"- {tip}" for tip in _FRIENDLY_TIPS)
    return "\n".join(lines)


def technical_failure_message(kind: ErrorKind, detail: str, provider_id: Optional[str]) -> str:
    """One-line failure report for builder users."""
    return f"Generation failed [{kind.value}] via {provider_id or 'unknown provider'}: {detail}"


def split_inputs(
    images_or_attachments: Optional[Sequence[Union[str, Attachment]]],
) -> Tuple[Tuple[str, ...], Tuple[Attachment, ...]]:
    """Encoded images (str) vs plain-text attachments."""
    images: List[str] = []
    attachments: List[Attachment] = []
    for item in images_or_attachments or ():
        if isinstance(item, Attachment):
            attachments.append(item)
        elif isinstance(item, str) and item:
            images.append(item)
    return tuple(images), tuple(attachments)


def render_attachments(prompt: str, attachments: Sequence[Attachment]) -> str:
    parts = [prompt] if prompt else []
    for a in attachments:
        parts.append(f"[Attachment: {a.name} ({a.kind})]\n{a.content}")
    return "\n\n".join(parts)


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class GenerationOrchestrator:
    """
    Drives one session's generations.

    Owns the session's ConversationMemory, FileManager and VersionStore.
    Persistence and usage collaborators are optional.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        config: Optional[OrchestratorConfig] = None,
        memory: Optional[ConversationMemory] = None,
        file_manager: Optional[FileManager] = None,
        version_store: Optional[VersionStore] = None,
        store=None,
        usage=None,
        listener: Optional[Callable[[GenerationEvent], None]] = None,
        explorer: Explorer = summarize_project,
        session_id: Optional[int] = None,
    ):
        self.gateway = gateway
        self.config = config or OrchestratorConfig()
        self.memory = memory or ConversationMemory()
        self.file_manager = file_manager or FileManager()
        self.version_store = version_store or VersionStore()
        self.store = store
        self.usage = usage
        self.listener = listener
        self.explorer = explorer
        self.session_id = session_id

        self._ids = MessageIdSequence()
        self._state = OrchestratorState.IDLE
        self._in_flight = False
        self._cancel_requested = False
        self._pending: Optional[asyncio.Future] = None
        self._outcome: Optional[GenerationOutcome] = None
        self.last_outcome: Optional[GenerationOutcome] = None
        self.build_log: List[str] = []

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def has_active_build(self) -> bool:
        return len(self.file_manager) > 0

    def select_provider(self, provider_id: str) -> None:
        self.config = self.config.with_provider(provider_id)

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _emit(self, kind: str, **detail) -> None:
        event = GenerationEvent(kind=kind, state=self._state, detail=detail)
        if self._outcome is not None:
            self._outcome.events.append(event)
        if self.listener is not None:
            try:
                self.listener(event)
            except Exception as e:
                logger.warning(f"[orchestrator] listener failed on {kind}: {e}")

    def _transition(self, event: OrchestratorEvent) -> OrchestratorState:
        previous = self._state
        self._state = next_state(previous, event)
        logger.debug(f"[orchestrator] {previous.value} --{event.value}--> {self._state.value}")
        self._emit("state", previous=previous.value, event=event.value, current=self._state.value)
        return self._state

    def _log_build(self, line: str) -> None:
        self.build_log.append(line)
        if self._outcome is not None:
            self._outcome.build_log.append(line)
        self._emit("build_log", line=line)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def submit(
        self,
        text: str,
        images_or_attachments: Optional[Sequence[Union[str, Attachment]]] = None,
        mode_override: Optional[Union[Mode, str]] = None,
    ):
        """
        Run one generation.

        Returns:
            TextResult | SingleFileResult | MultiFileResult | ErrorResult
        """
        if self._in_flight:
            logger.warning("[orchestrator] submit rejected: generation already in flight")
            return ErrorResult(
                error_kind=ErrorKind.BUSY,
                message="A generation is already in progress. Wait for it to finish or cancel it.",
                provider_id=self.config.provider_id,
            )

        images, attachments = split_inputs(images_or_attachments)
        try:
            self._validate_input(text, images, attachments)
        except UserInputError as e:
            logger.info(f"[orchestrator] rejected input: {e}")
            return ErrorResult(error_kind=ErrorKind.USER_INPUT, message=str(e), provider_id=self.config.provider_id)

        self._in_flight = True
        self._cancel_requested = False
        self._outcome = GenerationOutcome(requested_provider=self.config.provider_id)
        outcome = self._outcome
        try:
            result = await self._run(text or "", images, attachments, mode_override)
        finally:
            self._in_flight = False
            self._pending = None
            outcome.final_state = self._state
            outcome.session_id = self.session_id
            if self._state in TERMINAL_STATES:
                self._transition(OrchestratorEvent.RESET)
            else:
                # Interrupted from outside (task cancelled); nothing was applied
                self._state = OrchestratorState.IDLE
            self._outcome = None

        outcome.result = result
        outcome.provider_id = result.provider_id
        self.last_outcome = outcome
        return result

    def cancel(self) -> bool:
        """Cancel the in-flight generation if its backend call has not resolved."""
        if not self._in_flight or self._state not in _CANCELLABLE_STATES:
            return False
        if self._pending is None or self._pending.done():
            return False
        self._cancel_requested = True
        self._pending.cancel()
        logger.info(f"[orchestrator] cancel requested in {self._state.value}")
        return True

    # =========================================================================
    # PIPELINE
    # =========================================================================

    @staticmethod
    def _validate_input(text: Optional[str], images: Tuple[str, ...], attachments: Tuple[Attachment, ...]) -> None:
        if not (text or "").strip() and not images and not attachments:
            raise UserInputError("Type a message or attach a file before sending.")

    async def _run(
        self,
        text: str,
        images: Tuple[str, ...],
        attachments: Tuple[Attachment, ...],
        mode_override: Optional[Union[Mode, str]],
    ):
        outcome = self._outcome
        self._transition(OrchestratorEvent.SUBMIT)

        decision = explain_classification(text, mode_override, self.has_active_build)
        mode = decision.mode
        outcome.mode = mode
        self._emit("classified", mode=mode.value, reason=decision.reason, matched=decision.matched)

        if is_image_generation_request(text):
            outcome.image_generation_request = True
            self._emit("routing", reason="image generation request")

        prompt = render_attachments(effective_prompt(text, mode), attachments)
        provider_id = self._route_provider(images)

        if mode == Mode.CANVAS and not prompt and not images:
            self._transition(OrchestratorEvent.NO_REQUEST)
            return TextResult(content=CANVAS_READY_MESSAGE, provider_id=provider_id)

        # History is fixed before this turn is added
        self.memory.maybe_reset()
        if self.usage is not None:
            self.memory.set_tokens_available(not self.usage.is_quota_exceeded())
        history = self.memory.snapshot()

        self._ensure_session(text, mode, provider_id)
        self.memory.append(Message(
            id=self._ids.next_id(),
            role=Role.USER,
            content=text,
            attachments=attachments,
            images=images,
        ))
        self._persist(Role.USER, text, images=images)

        framework_hint = None
        if mode == Mode.BUILDER and self.config.exploration_enabled and self.has_active_build:
            self._transition(OrchestratorEvent.EXPLORE)
            try:
                exploration = await self._guard(explore_codebase(
                    self.file_manager, self.explorer, self.config.exploration_timeout_s,
                ))
            except asyncio.CancelledError:
                if self._cancel_requested:
                    return self._cancelled(provider_id)
                raise
            outcome.exploration = exploration
            self._emit("exploration", timed_out=exploration.timed_out, failed=exploration.failed)
            prompt = f"{prompt}\n\n{EXISTING_PROJECT_HEADER}\n{exploration.summary}"
            framework_hint = self.file_manager.detect_framework()
            self._transition(OrchestratorEvent.EXPLORED)
        else:
            self._transition(OrchestratorEvent.RESOLVED)

        if self._cancel_requested:
            return self._cancelled(provider_id)

        request = GenerationRequest(
            prompt=prompt,
            mode=mode,
            provider_id=provider_id,
            images=images,
            framework_hint=framework_hint,
            reasoning=self.config.reasoning,
        )

        async def attempt(strategy: FallbackStrategy) -> str:
            profile = get_provider_profile(strategy.provider_id)
            fitted, report = truncate_history_with_report(
                history,
                total_budget=strategy.budget,
                reserved_for_system_prompt=profile.system_prompt_tokens,
                reserved_for_current_prompt=estimate_tokens(prompt),
            )
            self._emit("truncation", strategy=strategy.name, provider_id=strategy.provider_id, **report.to_dict())
            return await self.gateway.generate(request.for_provider(strategy.provider_id, tuple(fitted)))

        try:
            fallback = await self._guard(execute_with_fallback(
                self._strategies(provider_id),
                attempt,
                classifier=classify_provider_failure,
                max_hops=self.config.max_fallback_hops,
                on_escalate=self._on_escalate,
            ))
        except asyncio.CancelledError:
            if self._cancel_requested:
                return self._cancelled(provider_id)
            raise
        outcome.fallback = fallback

        if not fallback.success:
            self._transition(OrchestratorEvent.PROVIDER_FAILED)
            kind = classify_exception(fallback.error) if fallback.error else ErrorKind.UNKNOWN
            detail = getattr(fallback.error, "message", None) or str(fallback.error)
            return self._fail(mode, kind, detail, fallback.final_provider)

        # Past this point cancel() is a no-op
        self._transition(OrchestratorEvent.RAW_RECEIVED)
        used_provider = fallback.final_provider
        raw = fallback.value

        if mode == Mode.BUILDER:
            result = decode_build_output(raw)
        else:
            result = decode(raw, ExpectedShape.TEXT)
        result = tag_provider(result, used_provider)

        if is_error(result):
            self._transition(OrchestratorEvent.DECODE_FAILED)
            return self._fail(mode, result.error_kind, result.message, used_provider)

        self._transition(OrchestratorEvent.DECODED)
        self._on_success(text, mode, result, raw, used_provider)
        return result

    async def _guard(self, coro):
        """Run a suspension point as a task cancel() can reach."""
        self._pending = asyncio.ensure_future(coro)
        try:
            return await self._pending
        finally:
            self._pending = None

    # =========================================================================
    # ROUTING AND ESCALATION
    # =========================================================================

    def _route_provider(self, images: Tuple[str, ...]) -> str:
        provider_id = self.config.provider_id
        if images and not get_provider_profile(provider_id).supports_vision:
            self._emit("routing", reason="vision", from_provider=provider_id, to_provider=self.config.vision_provider_id)
            logger.info(f"[orchestrator] images attached, routing {provider_id} → {self.config.vision_provider_id}")
            provider_id = self.config.vision_provider_id

        if self.usage is not None and provider_id != self.config.fallback_provider_id \
                and self.usage.is_provider_exhausted(provider_id):
            self._emit("routing", reason="daily allowance", from_provider=provider_id,
                       to_provider=self.config.fallback_provider_id)
            logger.info(f"[orchestrator] {provider_id} allowance used up, routing to {self.config.fallback_provider_id}")
            provider_id = self.config.fallback_provider_id
        return provider_id

    def _strategies(self, provider_id: str) -> List[FallbackStrategy]:
        budget = get_history_budget(provider_id)
        strategies = [
            FallbackStrategy("requesting", provider_id, budget),
            FallbackStrategy(
                "retry_truncated",
                provider_id,
                max(0, int(budget * self.config.retry_budget_ratio)),
                handles=frozenset({FailureClass.SIZE}),
            ),
        ]
        fallback_id = self.config.fallback_provider_id
        if fallback_id != provider_id:
            strategies.append(FallbackStrategy(
                "fallback_provider",
                fallback_id,
                get_history_budget(fallback_id),
                handles=frozenset({FailureClass.SIZE, FailureClass.QUOTA}),
            ))
        return strategies

    def _on_escalate(self, event: FallbackEvent, strategy: FallbackStrategy) -> None:
        self._transition(_FAILURE_EVENTS[event.failure_class])
        self._emit("fallback", **event.to_dict())

    # =========================================================================
    # TERMINAL HANDLING
    # =========================================================================

    def _cancelled(self, provider_id: str) -> ErrorResult:
        self._transition(OrchestratorEvent.CANCEL)
        logger.info("[orchestrator] generation cancelled")
        return ErrorResult(error_kind=ErrorKind.CANCELLED, message="Generation cancelled.", provider_id=provider_id)

    def _fail(self, mode: Mode, kind: ErrorKind, detail: str, provider_id: Optional[str]) -> ErrorResult:
        if mode == Mode.BUILDER:
            message = technical_failure_message(kind, detail, provider_id)
            self._log_build(f"> Error: {kind.value}: {detail}")
        else:
            message = friendly_failure_message(kind, detail)
        logger.error(f"[orchestrator] {mode.value} generation failed [{kind.value}] via {provider_id}: {detail}")
        self._outcome.user_message = message
        return ErrorResult(error_kind=kind, message=message, provider_id=provider_id)

    def _on_success(self, text: str, mode: Mode, result, raw: str, provider_id: str) -> None:
        outcome = self._outcome
        code: Optional[str] = None

        if isinstance(result, TextResult):
            content = result.content
        elif isinstance(result, SingleFileResult):
            content = result.explanation or "Code generated."
            code = result.content
        else:
            content = f"Generated {len(result.files)} file(s), entry {result.entry_path}."
            entry = next((f for f in result.files if f.path == result.entry_path), result.files[0])
            code = entry.content

        if mode == Mode.BUILDER and isinstance(result, (SingleFileResult, MultiFileResult)):
            self.file_manager.apply_result(result)
            version = self.version_store.save_version(self.file_manager.get_all_files(), message=text[:80] or None)
            outcome.version_id = version.id
            self._log_build(BUILD_COMPLETE_LINE)

        self.memory.append(Message(id=self._ids.next_id(), role=Role.ASSISTANT, content=content, code=code))
        self._persist(Role.ASSISTANT, content, code=code)

        if self.usage is not None:
            self.usage.record_usage(self.session_id, provider_id, estimate_tokens(raw))
            if self.usage.is_quota_exceeded():
                self.memory.set_tokens_available(False)

        if provider_id != outcome.requested_provider:
            logger.info(f"[orchestrator] answered by {provider_id} (requested {outcome.requested_provider})")

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def _ensure_session(self, text: str, mode: Mode, provider_id: str) -> None:
        if self.store is None or self.session_id is not None:
            return
        try:
            self.session_id = self.store.create_session(self.config.user_id, mode.value, provider_id, make_title(text))
            self._emit("persistence", action="create_session", session_id=self.session_id)
        except Exception as e:
            logger.warning(f"[orchestrator] could not create session: {e}")
            self._emit("persistence", action="create_session", error=str(e))

    def _persist(self, role: Role, content: str, code: Optional[str] = None, images: Sequence[str] = ()) -> None:
        if self.store is None or self.session_id is None:
            return
        try:
            self.store.save_message(self.session_id, role.value, content, code=code, images=list(images) or None)
        except Exception as e:
            logger.warning(f"[orchestrator] could not save {role.value} message: {e}")
            self._emit("persistence", action="save_message", role=role.value, error=str(e))


__all__ = [
    "OrchestratorState",
    "OrchestratorEvent",
    "InvalidTransitionError",
    "UserInputError",
    "TRANSITIONS",
    "TERMINAL_STATES",
    "next_state",
    "OrchestratorConfig",
    "GenerationEvent",
    "GenerationOutcome",
    "GenerationOrchestrator",
    "CANVAS_READY_MESSAGE",
    "BUILD_COMPLETE_LINE",
    "friendly_failure_message",
    "technical_failure_message",
    "split_inputs",
]
