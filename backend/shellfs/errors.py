"""File system error taxonomy."""

from __future__ import annotations


class FileSystemError(Exception):
    """Base class for all file system errors."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class NotFoundError(FileSystemError):
    """Path is absent from the index and every virtual mount."""


class ConflictError(FileSystemError):
    """An active item already occupies the target path."""


class InvalidTargetError(FileSystemError):
    """Destination is missing, not a directory, or otherwise unusable."""


class ReadOnlyError(FileSystemError):
    """Mutation attempted inside a virtual mount."""


class StorageUnavailableError(FileSystemError):
    """The content store rejected the operation (quota, permissions, closed connection)."""


class MigrationError(FileSystemError):
    """A schema migration step failed or the snapshot is from the future."""

    def __init__(self, message: str, from_version: int | None = None):
        super().__init__(message)
        self.from_version = from_version
