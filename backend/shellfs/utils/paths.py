"""Absolute '/'-separated path helpers for the virtual namespace."""

from __future__ import annotations

import posixpath

from shellfs.errors import InvalidTargetError

ROOT = "/"
TRASH_ROOT = "/Trash"


def normalize(path: str) -> str:
    """Collapse duplicate slashes, '.' and '..', and drop the trailing slash.

    Relative paths are anchored at the root. Climbing above the root is an
    error rather than being clamped.
    """
    if not path:
        raise InvalidTargetError("Empty path", path)
    if "\x00" in path:
        raise InvalidTargetError("Path contains NUL", path)

    parts: list[str] = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise InvalidTargetError(f"Path escapes root: {path}", path)
            parts.pop()
            continue
        parts.append(part)
    return ROOT + "/".join(parts)


def parent(path: str) -> str:
    if path == ROOT:
        return ROOT
    return posixpath.dirname(path) or ROOT


def basename(path: str) -> str:
    return posixpath.basename(path)


def join(parent_path: str, name: str) -> str:
    if parent_path == ROOT:
        return ROOT + name
    return f"{parent_path}/{name}"


def is_descendant(path: str, ancestor: str) -> bool:
    """True when ``path`` lies strictly below ``ancestor``."""
    if ancestor == ROOT:
        return path != ROOT
    return path.startswith(ancestor + "/")


def is_same_or_descendant(path: str, ancestor: str) -> bool:
    return path == ancestor or is_descendant(path, ancestor)


def rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    """Swap the ``old_prefix`` of ``path`` for ``new_prefix``."""
    if path == old_prefix:
        return new_prefix
    return join(new_prefix, path[len(old_prefix) + 1:])


def validate_name(name: str) -> str:
    """Check a single path segment used for rename and create."""
    name = name.strip()
    if not name or name in (".", "..") or "/" in name or "\x00" in name:
        raise InvalidTargetError(f"Invalid name: {name!r}")
    return name


def split_ext(name: str) -> tuple[str, str]:
    stem, ext = posixpath.splitext(name)
    return stem, ext
