# FILE: atelier/project/file_manager.py
"""
Virtual File Manager: the in-memory project a builder session edits.

Version: 1.0.0

STATE:
- files: ProjectFile keyed by normalised path (insertion order kept)
- entry_path: None, or a path present in files

RULES:
1. add_file is an upsert; adding the same (path, content, type) twice is a no-op
2. set_entry on a missing path keeps the previous entry and records
   EntryNotFoundError in last_error (logged, not raised)
3. deleting the entry file unsets the entry
4. paths are normalised: "\\" → "/", leading/trailing/duplicate slashes removed,
   leading "./" dropped

apply_result() loads a decoded generation result in one step: a single
document becomes index.html (page, entry), a project replaces all files.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from atelier.llm.schemas import FileType, MultiFileResult, SingleFileResult

logger = logging.getLogger(__name__)

SINGLE_FILE_PATH = "index.html"


class EntryNotFoundError(Exception):
    """Entry point names a path that is not in the project."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Entry path not found: {path}")


@dataclass(frozen=True)
class ProjectFile:
    path: str
    content: str
    file_type: FileType = FileType.OTHER
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "type": self.file_type.value,
            "last_modified": self.last_modified.isoformat(),
        }


def normalize_path(path: str) -> str:
    path = (path or "").replace("\\", "/").strip()
    while path.startswith("./"):
        path = path[2:]
    path = re.sub(r"/+", "/", path)
    return path.strip("/")


def infer_file_type(path: str) -> FileType:
    """Guess a file's role from its path."""
    lower = normalize_path(path).lower()
    name = lower.rsplit("/", 1)[-1]
    ext = name.rsplit(".", 1)[-1] if "." in name else ""
    segments = lower.split("/")[:-1]

    if "components" in segments or "component" in name:
        return FileType.COMPONENT

    if ext in ("tsx", "jsx", "vue", "svelte"):
        if "pages" in segments or "app" in segments or "page" in name:
            return FileType.PAGE
        return FileType.COMPONENT

    if ext in ("html", "htm"):
        return FileType.PAGE

    if ext in ("css", "scss", "sass", "less", "styl"):
        return FileType.STYLE

    if ext in ("json", "yaml", "yml", "toml") or "config" in name:
        return FileType.CONFIG

    return FileType.OTHER


class FileManager:
    """Keyed map of ProjectFiles plus an entry point."""

    def __init__(self):
        self._files: Dict[str, ProjectFile] = {}
        self._entry: Optional[str] = None
        self.last_error: Optional[EntryNotFoundError] = None

    # =========================================================================
    # CRUD
    # =========================================================================

    def add_file(
        self,
        path: str,
        content: str,
        file_type: Union[FileType, str, None] = None,
    ) -> ProjectFile:
        """
        Insert or replace a file.

        The path is normalized first (backslashes to "/", leading "./" and
        outer slashes dropped, repeated slashes collapsed), so the stored
        ProjectFile.path may differ from the argument: "./src/a.js" is kept
        as "src/a.js". Lookups normalize the same way. Repeating an identical
        call is a no-op. The type is inferred from the extension when omitted.
        """
        normalized = normalize_path(path)
        if not normalized:
            raise ValueError("File path must not be empty")
        resolved = FileType.coerce(file_type) if file_type is not None else infer_file_type(normalized)

        existing = self._files.get(normalized)
        if existing is not None and existing.content == content and existing.file_type == resolved:
            return existing

        pf = ProjectFile(path=normalized, content=content, file_type=resolved)
        self._files[normalized] = pf
        logger.debug(f"[file_manager] upsert {normalized} ({resolved.value}, {len(content)} chars)")
        return pf

    def get_file(self, path: str) -> Optional[ProjectFile]:
        return self._files.get(normalize_path(path))

    def has_file(self, path: str) -> bool:
        return normalize_path(path) in self._files

    def delete_file(self, path: str) -> bool:
        normalized = normalize_path(path)
        if normalized not in self._files:
            return False
        del self._files[normalized]
        if self._entry == normalized:
            logger.info(f"[file_manager] entry {normalized} deleted, entry unset")
            self._entry = None
        return True

    def get_all_files(self) -> List[ProjectFile]:
        return list(self._files.values())

    def get_files_by_type(self, file_type: Union[FileType, str]) -> List[ProjectFile]:
        wanted = FileType.coerce(file_type)
        return [f for f in self._files.values() if f.file_type == wanted]

    def clear(self) -> None:
        self._files.clear()
        self._entry = None
        self.last_error = None

    def __len__(self) -> int:
        return len(self._files)

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def set_entry(self, path: str) -> bool:
        """Point the entry at an existing file. Missing path → False, entry kept."""
        normalized = normalize_path(path)
        if normalized not in self._files:
            self.last_error = EntryNotFoundError(normalized)
            logger.warning(f"[file_manager] {self.last_error}; keeping {self._entry!r}")
            return False
        self._entry = normalized
        self.last_error = None
        return True

    def get_entry(self) -> Optional[str]:
        return self._entry

    # =========================================================================
    # STRUCTURE
    # =========================================================================

    def get_file_tree(self) -> Dict[str, Any]:
        """Nested dict: directories → {"type": "directory", "children": {...}}."""
        tree: Dict[str, Any] = {}
        for pf in self._files.values():
            parts = pf.path.split("/")
            current = tree
            for part in parts[:-1]:
                node = current.setdefault(part, {"type": "directory", "children": {}})
                current = node["children"]
            current[parts[-1]] = {"type": "file", "path": pf.path, "file_type": pf.file_type.value}
        return tree

    def detect_framework(self) -> str:
        """next / vue / svelte / react / html, judged from file paths."""
        paths = [p.lower() for p in self._files]
        if not paths:
            return "html"

        def has_segment(p: str, seg: str) -> bool:
            return p.startswith(seg + "/") or f"/{seg}/" in p

        if any("next.config" in p or has_segment(p, "pages") or has_segment(p, "app") for p in paths):
            return "next"
        if any(p.endswith(".vue") or "vue.config" in p for p in paths):
            return "vue"
        if any(p.endswith(".svelte") for p in paths):
            return "svelte"
        if any(p.endswith((".tsx", ".jsx")) for p in paths):
            return "react"
        return "html"

    # =========================================================================
    # IMPORT / EXPORT
    # =========================================================================

    def export_project(self) -> Dict[str, Any]:
        return {
            "files": [
                {"path": f.path, "content": f.content, "type": f.file_type.value}
                for f in self._files.values()
            ],
            "entry": self._entry,
            "framework": self.detect_framework(),
        }

    def import_project(self, project: Dict[str, Any]) -> None:
        """Replace the whole project with an exported structure."""
        items = project.get("files") or []
        staged = []
        for item in items:
            path = normalize_path(str(item.get("path") or ""))
            if not path:
                raise ValueError("Imported file without a path")
            staged.append((path, str(item.get("content") or ""), item.get("type")))
        self._replace(staged, project.get("entry"))

    def _replace(self, staged: Iterable, entry: Optional[str]) -> None:
        self.clear()
        for path, content, file_type in staged:
            self.add_file(path, content, file_type)
        if entry and self.set_entry(entry):
            return
        if self._files:
            self._entry = next(iter(self._files))

    def apply_result(self, result: Union[SingleFileResult, MultiFileResult]) -> List[str]:
        """
        Load a decoded build result as the current project.

        Returns:
            Paths written
        """
        if isinstance(result, SingleFileResult):
            staged = [(SINGLE_FILE_PATH, result.content, FileType.PAGE)]
            entry = SINGLE_FILE_PATH
        elif isinstance(result, MultiFileResult):
            staged = [
                (f.path, f.content, f.file_type if f.file_type != FileType.OTHER else None)
                for f in result.files
            ]
            entry = result.entry_path
        else:
            raise TypeError(f"Cannot apply {type(result).__name__} to a project")

        self._replace(staged, entry)
        logger.info(f"[file_manager] applied {len(staged)} file(s), entry={self._entry}")
        return [path for path, _, _ in staged]


__all__ = [
    "SINGLE_FILE_PATH",
    "EntryNotFoundError",
    "ProjectFile",
    "FileManager",
    "normalize_path",
    "infer_file_type",
]
