# FILE: atelier/project/__init__.py
"""Virtual project: file manager and version store."""

from atelier.project.file_manager import EntryNotFoundError, FileManager, ProjectFile
from atelier.project.version_store import Version, VersionDiff, VersionStore

__all__ = [
    "EntryNotFoundError",
    "FileManager",
    "ProjectFile",
    "Version",
    "VersionDiff",
    "VersionStore",
]
