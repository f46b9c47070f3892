"""FastAPI dependency injection — file system service."""

from __future__ import annotations

from shellfs.services import get_filesystem
from shellfs.services.filesystem import FileSystemService


def get_fs() -> FileSystemService:
    """Registry-backed service; tests override this dependency."""
    return get_filesystem()
