# FILE: atelier/project/version_store.py
"""
Version Store: append-only log of project snapshots.

Version: 1.0.0

- save_version() copies the files it is given; later edits to the live
  project never reach a saved Version
- ids are monotonic integers, never reused within a store
- get_all_versions() is newest first
- restore() hands back a copy of a snapshot; applying it to a FileManager
  is the caller's job
- history is bounded by max_versions (oldest dropped)
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .file_manager import ProjectFile

logger = logging.getLogger(__name__)

DEFAULT_MAX_VERSIONS = 50


@dataclass(frozen=True)
class Version:
    id: int
    timestamp: datetime
    files: Tuple[ProjectFile, ...]
    message: Optional[str] = None

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "paths": [f.path for f in self.files],
        }
        if include_content:
            data["files"] = [f.to_dict() for f in self.files]
        return data


@dataclass(frozen=True)
class FileChange:
    path: str
    old_content: str
    new_content: str


@dataclass
class VersionDiff:
    added: List[ProjectFile] = field(default_factory=list)
    removed: List[ProjectFile] = field(default_factory=list)
    modified: List[FileChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": [f.path for f in self.added],
            "removed": [f.path for f in self.removed],
            "modified": [c.path for c in self.modified],
        }


def _snapshot(files: Iterable[ProjectFile]) -> Tuple[ProjectFile, ...]:
    return tuple(
        ProjectFile(path=f.path, content=f.content, file_type=f.file_type, last_modified=f.last_modified)
        for f in files
    )


class VersionStore:
    """In-memory, bounded, append-only version log."""

    def __init__(self, max_versions: int = DEFAULT_MAX_VERSIONS):
        self.max_versions = max_versions
        self._versions: List[Version] = []     # oldest first
        self._ids = itertools.count(1)

    def save_version(self, files: Iterable[ProjectFile], message: Optional[str] = None) -> Version:
        version = Version(
            id=next(self._ids),
            timestamp=datetime.now(timezone.utc),
            files=_snapshot(files),
            message=message,
        )
        self._versions.append(version)
        if len(self._versions) > self.max_versions:
            dropped = self._versions[: len(self._versions) - self.max_versions]
            self._versions = self._versions[-self.max_versions:]
            logger.debug(f"[versions] dropped {[v.id for v in dropped]} over limit {self.max_versions}")
        logger.info(f"[versions] saved v{version.id} ({len(version.files)} file(s)) {message or ''}".rstrip())
        return version

    def get_all_versions(self) -> List[Version]:
        return list(reversed(self._versions))

    def get_version(self, version_id: int) -> Optional[Version]:
        for v in self._versions:
            if v.id == version_id:
                return v
        return None

    def delete_version(self, version_id: int) -> bool:
        for index, v in enumerate(self._versions):
            if v.id == version_id:
                del self._versions[index]
                return True
        return False

    def restore(self, version_id: int) -> Optional[List[ProjectFile]]:
        version = self.get_version(version_id)
        if version is None:
            return None
        return list(_snapshot(version.files))

    def diff(self, older_id: int, newer_id: int) -> VersionDiff:
        """Files added/removed/modified going from older to newer. Unknown ids → empty diff."""
        older = self.get_version(older_id)
        newer = self.get_version(newer_id)
        result = VersionDiff()
        if older is None or newer is None:
            return result

        old_files = {f.path: f for f in older.files}
        new_files = {f.path: f for f in newer.files}
        for path, f in new_files.items():
            previous = old_files.get(path)
            if previous is None:
                result.added.append(f)
            elif previous.content != f.content:
                result.modified.append(FileChange(path, previous.content, f.content))
        result.removed = [f for path, f in old_files.items() if path not in new_files]
        return result

    def clear(self) -> None:
        self._versions.clear()

    def __len__(self) -> int:
        return len(self._versions)


__all__ = [
    "DEFAULT_MAX_VERSIONS",
    "Version",
    "VersionDiff",
    "FileChange",
    "VersionStore",
]
