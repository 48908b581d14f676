# FILE: atelier/llm/intent_classifier.py
"""
Intent classification for workspace routing.

Version: 1.0.0

3-MODE CLASSIFICATION:
1. TUTOR   → conversational answer (safe default)
2. BUILDER → generated web app / page / project
3. CANVAS  → drawing board session

PRIORITY ORDER:
1. Explicit mode override from the caller (returned unchanged)
2. Active build session + edit/modify request → BUILDER
3. Canvas trigger phrase (exact or substring) → CANVAS
4. Build request (verb + web/app/page/site target) → BUILDER
5. Default → TUTOR

Trigger phrases are bilingual (English + Indonesian) data tables. Canvas
phrases match as plain substrings ("menggambar", "gambarkan"); build verbs,
targets and question leads match as whole words. All matching is
case-insensitive. Classification never fails.

Image generation ("buatkan gambar kucing") is detected by a separate
predicate, is_image_generation_request(), which does not produce a Mode.
"""

import os
import re
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Set, Union

from .schemas import Mode

logger = logging.getLogger(__name__)

# ============================================================================
# ROUTER DEBUG MODE
# ============================================================================
ROUTER_DEBUG = os.getenv("ATELIER_ROUTER_DEBUG", "0") == "1"


def _debug_log(msg: str):
    """Log classifier trace if ROUTER_DEBUG is enabled."""
    if ROUTER_DEBUG:
        logger.debug(f"[intent-debug] {msg}")


# =============================================================================
# PHRASE TABLES
# =============================================================================

CANVAS_TRIGGER_PHRASES: Set[str] = {
    # English
    "canvas", "whiteboard", "sketch", "draw", "drawing", "doodle", "scribble",
    # Indonesian
    "gambar", "orak-orek", "orak orek", "coret", "coret-coret", "corat-coret",
    "papan tulis", "rumus", "matematika",
}

# Verbs that open a build request
BUILD_VERBS: List[str] = [
    "build", "create", "make", "generate", "develop", "code",
    "buat", "buatkan", "bikin", "bikinkan", "bangun", "rancang",
]

# Targets that make a build request about a web artefact
BUILD_TARGETS: List[str] = [
    "web", "website", "webapp", "web app", "app", "application", "page",
    "landing page", "site", "dashboard", "portfolio", "homepage", "ui",
    "aplikasi", "halaman", "halaman web", "situs", "portofolio", "toko online",
]

# Leading question words; a question about websites is a tutor request
QUESTION_LEADS: List[str] = [
    "what", "why", "how", "when", "where", "who", "which", "explain", "describe",
    "apa", "mengapa", "kenapa", "bagaimana", "kapan", "dimana", "siapa",
    "jelaskan", "terangkan",
]

EDIT_PATTERNS: List[Pattern] = [
    re.compile(
        r"^(please\s+|tolong\s+)?"
        r"(change|modify|update|edit|replace|rename|move|fix|add|remove|delete|"
        r"make it|make the|turn the|ubah|ganti|tambah|tambahkan|hapus|perbaiki|"
        r"jadikan|buat jadi|buat menjadi|pindahkan)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(change|ubah|ganti)\s+(the\s+)?"
        r"(color|colour|warna|font|background|layout|style|text|teks|title|judul)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(add|tambah|tambahkan)\s+(a\s+|an\s+|the\s+|new\s+)?"
        r"(button|tombol|section|bagian|navbar|footer|header|image|gambar|form|"
        r"page|halaman|menu|card|kartu)\b",
        re.IGNORECASE,
    ),
]

IMAGE_GENERATION_PATTERNS: List[Pattern] = [
    re.compile(
        r"\b(generate|create|make|render|buat|buatkan|bikin|bikinkan)\s+"
        r"(me\s+|an?\s+|the\s+|sebuah\s+|satu\s+)?"
        r"(image|picture|photo|illustration|artwork|gambar|foto|ilustrasi|lukisan)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(text[- ]to[- ]image|image generation|generate image)\b", re.IGNORECASE),
    re.compile(r"^gambarkan\s+\S+", re.IGNORECASE),
]


def _phrase_pattern(phrases: Iterable[str]) -> Pattern:
    # Longest first so multi-word phrases win over their prefixes
    ordered = sorted(set(phrases), key=len, reverse=True)
    body = "|".join(re.escape(p) for p in ordered)
    return re.compile(rf"(?<![\w-])({body})(?![\w-])", re.IGNORECASE)


# Substring search, so inflected forms like "menggambar" still trigger
_CANVAS_RE = re.compile(
    "|".join(re.escape(p) for p in sorted(CANVAS_TRIGGER_PHRASES, key=len, reverse=True)),
    re.IGNORECASE,
)
_BUILD_RE = re.compile(
    rf"(?<![\w-])({'|'.join(re.escape(v) for v in BUILD_VERBS)})(?![\w-])"
    r"(?:\W+\w+){0,6}?\W+"
    rf"({'|'.join(re.escape(t) for t in sorted(BUILD_TARGETS, key=len, reverse=True))})(?![\w-])",
    re.IGNORECASE,
)
_QUESTION_RE = _phrase_pattern(QUESTION_LEADS)


# =============================================================================
# DECISION
# =============================================================================

@dataclass(frozen=True)
class IntentDecision:
    """Classifier output with the rule that produced it."""
    mode: Mode
    reason: str
    matched: Optional[str] = None


def _normalize(text: str) -> str:
    return " ".join((text or "").lower().split())


def _coerce_mode(value: Union[Mode, str]) -> Mode:
    return value if isinstance(value, Mode) else Mode(str(value).lower())


def matches_edit_request(text: str) -> bool:
    """True if the text asks to modify existing generated output."""
    normalized = _normalize(text)
    return any(p.search(normalized) for p in EDIT_PATTERNS)


def match_canvas_trigger(text: str) -> Optional[str]:
    """Return the canvas trigger phrase found in the text, if any."""
    normalized = _normalize(text)
    if normalized in CANVAS_TRIGGER_PHRASES:
        return normalized
    match = _CANVAS_RE.search(normalized)
    return match.group(0) if match else None


def match_build_request(text: str) -> Optional[str]:
    """Return the matched build phrase, or None for questions and non-builds."""
    normalized = _normalize(text)
    lead = _QUESTION_RE.match(normalized)
    if lead:
        return None
    match = _BUILD_RE.search(normalized)
    if match:
        return match.group(0)
    return None


def explain_classification(
    text: str,
    mode_override: Optional[Union[Mode, str]] = None,
    has_active_build: bool = False,
) -> IntentDecision:
    """
    Classify text into a Mode and report why.

    Args:
        text: Raw user text (may be empty)
        mode_override: Explicit mode chosen by the caller
        has_active_build: An active builder session already has generated code

    Returns:
        IntentDecision
    """
    # =========================================================================
    # 1. EXPLICIT OVERRIDE
    # =========================================================================
    if mode_override is not None:
        mode = _coerce_mode(mode_override)
        _debug_log(f"override → {mode.value}")
        return IntentDecision(mode, "Explicit mode override")

    if not text or not text.strip():
        return IntentDecision(Mode.TUTOR, "Empty input defaults to tutor")

    _debug_log(f"classify: {text[:200]!r} (active_build={has_active_build})")

    # =========================================================================
    # 2. EDIT OF AN EXISTING BUILD
    # =========================================================================
    if has_active_build and matches_edit_request(text):
        _debug_log("  → BUILDER (edit of existing output)")
        return IntentDecision(Mode.BUILDER, "Edit request on active build session")

    # =========================================================================
    # 3. CANVAS TRIGGERS
    # =========================================================================
    trigger = match_canvas_trigger(text)
    if trigger:
        _debug_log(f"  → CANVAS (trigger: {trigger})")
        return IntentDecision(Mode.CANVAS, "Canvas trigger phrase", matched=trigger)

    # =========================================================================
    # 4. BUILD REQUESTS
    # =========================================================================
    build = match_build_request(text)
    if build:
        _debug_log(f"  → BUILDER (build phrase: {build})")
        return IntentDecision(Mode.BUILDER, "Build request pattern", matched=build)

    # =========================================================================
    # 5. DEFAULT
    # =========================================================================
    return IntentDecision(Mode.TUTOR, "No build or canvas signal")


def classify(
    text: str,
    mode_override: Optional[Union[Mode, str]] = None,
    has_active_build: bool = False,
) -> Mode:
    """Classify raw user text into tutor / builder / canvas."""
    return explain_classification(text, mode_override, has_active_build).mode


def is_image_generation_request(text: str) -> bool:
    """True if the text asks for a generated image rather than code or prose."""
    normalized = _normalize(text)
    if not normalized:
        return False
    return any(p.search(normalized) for p in IMAGE_GENERATION_PATTERNS)


def effective_prompt(text: str, mode: Mode) -> str:
    """
    Prompt actually sent for a mode.

    A bare canvas trigger word ("gambar", "canvas") opens the board and carries
    no request of its own, so its effective prompt is empty.
    """
    normalized = _normalize(text)
    if mode == Mode.CANVAS and normalized in CANVAS_TRIGGER_PHRASES:
        return ""
    return (text or "").strip()


__all__ = [
    "IntentDecision",
    "CANVAS_TRIGGER_PHRASES",
    "classify",
    "explain_classification",
    "is_image_generation_request",
    "effective_prompt",
    "matches_edit_request",
    "match_canvas_trigger",
    "match_build_request",
]
