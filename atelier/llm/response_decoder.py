# FILE: atelier/llm/response_decoder.py
"""
Response decoding: raw backend text → typed GenerationResult.

Version: 1.0.0

ERROR-SHAPE DETECTION (runs first, for every shape):
- "<!-- Error Generating Code -->" sentinel at the head of the payload
- red error-box markup (<div class="text-red-500 bg-red-900/20 ...">)
- JSON error envelope ({"error": "...", "detail": ...})
→ ErrorResult(PROVIDER_ERROR) carrying the inner text with markup stripped

SHAPES:
- text:        embedded markers stripped; empty → EMPTY_OUTPUT
- single_file: innermost fenced block → content, surrounding prose →
               explanation; raw document (<!DOCTYPE / <html) → content;
               plain prose → wrapped in a minimal HTML scaffold
- multi_file:  JSON {files:[{path,content,type}], entry, framework} (bare or
               fenced); bad/missing entry → first file; any file carrying
               error markers demotes the whole batch to ErrorResult

decode() never raises. Decoding is deterministic: the same input always
produces an equal result.
"""

import re
import html
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .schemas import (
    ErrorKind,
    ErrorResult,
    ExpectedShape,
    FileType,
    GeneratedFile,
    MultiFileResult,
    SingleFileResult,
    TextResult,
)

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR MARKERS
# =============================================================================

ERROR_SENTINEL = "<!-- Error Generating Code -->"

_ERROR_BOX_RE = re.compile(
    r"<div\s+class=\"text-red-500\s+bg-red-900/20[^\"]*\"[^>]*>.*?</div>",
    re.IGNORECASE | re.DOTALL,
)
_ERROR_BOX_ANY_RE = re.compile(r"<div\s+class=\"text-red-500\s+bg-red-900/20", re.IGNORECASE)
_ERROR_BOX_HEAD_RE = re.compile(r"^\s*<div\s+class=\"text-red-500\s+bg-red-900/20", re.IGNORECASE)
_SENTINEL_RE = re.compile(re.escape(ERROR_SENTINEL), re.IGNORECASE)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"[ \t]+")

_DOCUMENT_OPENERS = ("<!doctype", "<html")

# Fence languages that hold a renderable document
_DOCUMENT_LANGS = {"html", "htm", "xml", "jsx", "tsx", "react", "vue", "svelte"}

SCAFFOLD_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Generated App</title>
</head>
<body>
  <main>
{body}
  </main>
</body>
</html>"""

ResultType = Union[TextResult, SingleFileResult, MultiFileResult, ErrorResult]


def strip_markup(text: str) -> str:
    """Human-readable text from an HTML-ish payload."""
    text = _COMMENT_RE.sub(" ", text or "")
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    lines = [_WS_RE.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def _json_error_message(raw: str) -> Optional[str]:
    stripped = raw.strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        return None
    try:
        data = json.loads(stripped)
    except ValueError:
        return None
    if not isinstance(data, dict) or "error" not in data:
        return None
    if set(data.keys()) - {"error", "detail", "code", "status"}:
        return None
    error = data.get("error")
    if isinstance(error, dict):
        error = error.get("message") or json.dumps(error)
    return str(error or data.get("detail") or "Unknown error")


def looks_like_error_payload(raw: str) -> bool:
    """True if the whole payload is a backend failure rendered as output."""
    if not raw:
        return False
    head = raw.lstrip()
    if head.lower().startswith(ERROR_SENTINEL.lower()):
        return True
    if _ERROR_BOX_HEAD_RE.match(head):
        return True
    return _json_error_message(raw) is not None


def contains_error_marker(text: str) -> bool:
    """True if an error sentinel or error box appears anywhere in the text."""
    if not text:
        return False
    return bool(_SENTINEL_RE.search(text) or _ERROR_BOX_ANY_RE.search(text))


def strip_error_markers(text: str) -> str:
    """Remove embedded error boxes and sentinels, keep everything else."""
    text = _ERROR_BOX_RE.sub("", text or "")
    text = _SENTINEL_RE.sub("", text)
    return text.strip()


def _error_from_payload(raw: str) -> ErrorResult:
    message = _json_error_message(raw)
    if message is None:
        message = strip_markup(raw) or "The generation backend reported an error."
    return ErrorResult(error_kind=ErrorKind.PROVIDER_ERROR, message=message)


# =============================================================================
# FENCED BLOCKS
# =============================================================================

@dataclass
class FencedBlock:
    """One ``` fenced block located in a payload."""
    lang: str
    body: str
    start: int          # offset of the opening fence
    end: int            # offset just past the closing fence
    closed: bool = True
    children: List["FencedBlock"] = field(default_factory=list)

    @property
    def is_innermost(self) -> bool:
        return not self.children


_FENCE_LINE_RE = re.compile(r"^[ \t]*```[ \t]*([\w+.#-]*)[ \t]*$", re.MULTILINE)


def find_fenced_blocks(raw: str) -> List[FencedBlock]:
    """
    Locate fenced blocks, nesting aware.

    A fence line with a language tag always opens a block. A bare fence line
    closes the innermost open block, or opens one if none is open. A block
    left open at the end (truncated output) runs to the end of the payload.
    """
    blocks: List[FencedBlock] = []
    stack: List[FencedBlock] = []
    body_starts: List[int] = []

    for match in _FENCE_LINE_RE.finditer(raw):
        lang = match.group(1).lower()
        if stack and not lang:
            block = stack.pop()
            body_start = body_starts.pop()
            block.body = raw[body_start:match.start()].rstrip("\r\n")
            block.end = match.end()
            blocks.append(block)
            if stack:
                stack[-1].children.append(block)
            continue

        block = FencedBlock(lang=lang, body="", start=match.start(), end=len(raw))
        stack.append(block)
        body_starts.append(min(match.end() + 1, len(raw)))

    while stack:
        block = stack.pop()
        body_start = body_starts.pop()
        block.body = raw[body_start:].rstrip()
        block.closed = False
        blocks.append(block)
        if stack:
            stack[-1].children.append(block)

    blocks.sort(key=lambda b: b.start)
    return blocks


def _pick_code_block(blocks: List[FencedBlock]) -> Optional[FencedBlock]:
    innermost = [b for b in blocks if b.is_innermost and b.body.strip()]
    if not innermost:
        return None
    for block in innermost:
        if block.lang in _DOCUMENT_LANGS or _is_document(block.body):
            return block
    return innermost[0]


def _outermost_containing(blocks: List[FencedBlock], inner: FencedBlock) -> FencedBlock:
    outer = inner
    for block in blocks:
        if block.start <= inner.start and block.end >= inner.end and (block.end - block.start) > (outer.end - outer.start):
            outer = block
    return outer


def _is_document(text: str) -> bool:
    return text.lstrip().lower().startswith(_DOCUMENT_OPENERS)


def wrap_in_scaffold(prose: str) -> str:
    """Minimal valid HTML document around plain prose."""
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", prose.strip()) if p.strip()]
    body = "\n".join(
        "    <p>{}</p>".format(html.escape(p).replace("\n", "<br>")) for p in paragraphs
    )
    return SCAFFOLD_TEMPLATE.format(body=body)


# =============================================================================
# SHAPE DECODERS
# =============================================================================

def _empty_output(what: str) -> ErrorResult:
    return ErrorResult(error_kind=ErrorKind.EMPTY_OUTPUT, message=f"The backend returned an empty {what}.")


def decode_text(raw: str) -> ResultType:
    content = strip_error_markers(raw)
    if not content:
        return _empty_output("answer")
    return TextResult(content=content)


def decode_single_file(raw: str) -> ResultType:
    blocks = find_fenced_blocks(raw)
    block = _pick_code_block(blocks)

    if block is not None:
        outer = _outermost_containing(blocks, block)
        explanation = (raw[:outer.start] + raw[outer.end:]).strip()
        content = block.body
    elif blocks:
        return _empty_output("document")
    elif _is_document(raw):
        explanation = ""
        content = raw.strip()
    elif raw.strip():
        explanation = raw.strip()
        content = wrap_in_scaffold(raw)
    else:
        return _empty_output("document")

    if not content.strip():
        return _empty_output("document")
    return SingleFileResult(content=content, explanation=explanation)


def _parse_project_json(raw: str) -> Optional[Any]:
    stripped = raw.strip()
    candidates: List[str] = []
    if stripped.startswith(("{", "[")):
        candidates.append(stripped)
    for block in find_fenced_blocks(raw):
        body = block.body.strip()
        if body.startswith(("{", "[")):
            candidates.append(body)
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return None


def _normalize_path(path: str) -> str:
    path = path.replace("\\", "/").strip()
    while path.startswith("./"):
        path = path[2:]
    return re.sub(r"/+", "/", path).strip("/")


def _coerce_files(items: Any) -> List[GeneratedFile]:
    files: List[GeneratedFile] = []
    if not isinstance(items, list):
        return files
    for item in items:
        if not isinstance(item, dict):
            continue
        path = _normalize_path(str(item.get("path") or item.get("name") or ""))
        if not path:
            continue
        content = item.get("content")
        file_type = item.get("type", item.get("fileType", item.get("file_type")))
        files.append(GeneratedFile(
            path=path,
            content=content if isinstance(content, str) else "",
            file_type=FileType.coerce(file_type),
        ))
    return files


def looks_like_project(raw: str) -> bool:
    data = _parse_project_json(raw)
    if isinstance(data, list):
        return bool(_coerce_files(data))
    return isinstance(data, dict) and isinstance(data.get("files"), list)


def decode_multi_file(raw: str) -> ResultType:
    data = _parse_project_json(raw)
    if data is None:
        return ErrorResult(
            error_kind=ErrorKind.DECODE_FAILURE,
            message="Expected a JSON project listing but could not parse one.",
        )

    if isinstance(data, list):
        payload: Dict[str, Any] = {"files": data}
    elif isinstance(data, dict):
        payload = data
    else:
        payload = {}

    files = _coerce_files(payload.get("files"))
    if not files:
        return ErrorResult(error_kind=ErrorKind.DECODE_FAILURE, message="The project listing contains no files.")

    for f in files:
        if contains_error_marker(f.content):
            logger.warning(f"[decoder] error marker in {f.path}, demoting project")
            detail = strip_markup(f.content) or "error payload"
            return ErrorResult(
                error_kind=ErrorKind.PROVIDER_ERROR,
                message=f"{f.path}: {detail}",
            )

    paths = [f.path for f in files]
    entry_raw = payload.get("entry") or payload.get("entryPath") or payload.get("entry_path")
    entry = _normalize_path(str(entry_raw)) if entry_raw else ""
    if entry not in paths:
        entry = paths[0]

    framework = payload.get("framework")
    return MultiFileResult(
        files=tuple(files),
        entry_path=entry,
        framework=str(framework) if framework else None,
    )


# =============================================================================
# PUBLIC API
# =============================================================================

def decode(raw: Optional[str], expected_shape: Union[ExpectedShape, str]) -> ResultType:
    """
    Decode raw backend text into a typed result.

    Args:
        raw: Backend output (None treated as empty)
        expected_shape: text / single_file / multi_file

    Returns:
        TextResult, SingleFileResult, MultiFileResult or ErrorResult
    """
    raw = (raw or "").replace("\r\n", "\n")
    try:
        shape = ExpectedShape(expected_shape)

        if looks_like_error_payload(raw):
            return _error_from_payload(raw)

        if shape == ExpectedShape.TEXT:
            return decode_text(raw)
        if shape == ExpectedShape.SINGLE_FILE:
            return decode_single_file(raw)
        return decode_multi_file(raw)

    except Exception as e:
        logger.error(f"[decoder] decode failed: {e}")
        return ErrorResult(error_kind=ErrorKind.DECODE_FAILURE, message=f"Could not decode backend output: {e}")


def decode_build_output(raw: Optional[str]) -> ResultType:
    """Builder backends answer with either a project listing or one document."""
    raw = (raw or "").replace("\r\n", "\n")
    try:
        if not looks_like_error_payload(raw) and looks_like_project(raw):
            return decode(raw, ExpectedShape.MULTI_FILE)
    except Exception as e:
        logger.warning(f"[decoder] project probe failed: {e}")
    return decode(raw, ExpectedShape.SINGLE_FILE)


__all__ = [
    "ERROR_SENTINEL",
    "FencedBlock",
    "decode",
    "decode_build_output",
    "decode_text",
    "decode_single_file",
    "decode_multi_file",
    "find_fenced_blocks",
    "looks_like_error_payload",
    "looks_like_project",
    "contains_error_marker",
    "strip_error_markers",
    "strip_markup",
    "wrap_in_scaffold",
]
