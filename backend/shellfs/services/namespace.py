"""Virtual namespace — read-only directories projected from external catalogs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from shellfs.errors import ReadOnlyError
from shellfs.schemas.items import VirtualItem
from shellfs.utils import paths

logger = logging.getLogger(__name__)

VIRTUAL_FOLDER_TYPE = "virtual-folder"


@dataclass(frozen=True)
class CatalogEntry:
    """One entry exposed by a catalog collaborator.

    ``folder`` is an optional '/'-separated sub-folder relative to the mount.
    """

    id: str
    name: str
    type: str
    folder: str = ""
    icon: str | None = None


class Catalog(Protocol):
    def entries(self) -> Iterable[CatalogEntry]: ...


class StaticCatalog:
    """In-memory catalog, owned and mutated by its collaborator."""

    def __init__(self, entries: Iterable[CatalogEntry] | None = None):
        self._entries: dict[str, CatalogEntry] = {}
        for entry in entries or ():
            self._entries[entry.id] = entry

    def entries(self) -> list[CatalogEntry]:
        return list(self._entries.values())

    def add(self, entry: CatalogEntry) -> None:
        self._entries[entry.id] = entry

    def remove(self, entry_id: str) -> None:
        self._entries.pop(entry_id, None)

    def replace(self, entries: Iterable[CatalogEntry]) -> None:
        self._entries = {e.id: e for e in entries}


class JsonFileCatalog:
    """Catalog backed by a JSON list on disk, re-read on every call.

    Each element needs an ``id`` and a ``name`` (or ``title``); ``type`` and
    ``folder`` are optional.
    """

    def __init__(self, path: str | Path, default_type: str):
        self._path = Path(path)
        self._default_type = default_type

    def entries(self) -> list[CatalogEntry]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read catalog %s: %s", self._path, e)
            return []

        result: list[CatalogEntry] = []
        for raw in data if isinstance(data, list) else []:
            if not isinstance(raw, dict) or "id" not in raw:
                continue
            result.append(CatalogEntry(
                id=str(raw["id"]),
                name=str(raw.get("name") or raw.get("title") or raw["id"]),
                type=str(raw.get("type") or self._default_type),
                folder=str(raw.get("folder") or "").strip("/"),
                icon=raw.get("icon"),
            ))
        return result


BUILTIN_APPLICATIONS: list[tuple[str, str]] = [
    ("soundboard", "Soundboard"),
    ("internet-explorer", "Internet Explorer"),
    ("chats", "Chats"),
    ("textedit", "TextEdit"),
    ("paint", "Paint"),
    ("photo-booth", "Photo Booth"),
    ("minesweeper", "Minesweeper"),
    ("videos", "Videos"),
    ("ipod", "iPod"),
    ("synth", "Synth"),
    ("pc", "Virtual PC"),
    ("terminal", "Terminal"),
    ("applet-viewer", "Applet Store"),
    ("control-panels", "Control Panels"),
]


def builtin_applications() -> StaticCatalog:
    """The shell's application registry (Finder is not listed)."""
    return StaticCatalog(
        CatalogEntry(id=app_id, name=name, type="application")
        for app_id, name in BUILTIN_APPLICATIONS
    )


class VirtualNamespace:
    """Static mount table of path -> catalog."""

    def __init__(self, mounts: dict[str, Catalog] | None = None):
        self._mounts: dict[str, Catalog] = {
            paths.normalize(mount): catalog for mount, catalog in (mounts or {}).items()
        }

    @property
    def mounts(self) -> list[str]:
        return sorted(self._mounts)

    def mount_for(self, path: str) -> str | None:
        """Deepest mount that is the path itself or one of its ancestors."""
        best: str | None = None
        for mount in self._mounts:
            if paths.is_same_or_descendant(path, mount):
                if best is None or len(mount) > len(best):
                    best = mount
        return best

    def is_virtual(self, path: str) -> bool:
        return self.mount_for(path) is not None

    def ensure_writable(self, path: str) -> None:
        mount = self.mount_for(path)
        if mount is not None:
            raise ReadOnlyError(f"{path} is inside the read-only mount {mount}", path)

    def get(self, path: str) -> VirtualItem | None:
        if path in self._mounts:
            return self._folder(path, path)
        if not self.is_virtual(path):
            return None
        for item in self.list(paths.parent(path)):
            if item.path == path:
                return item
        return None

    def list(self, path: str) -> list[VirtualItem]:
        """Virtual children of ``path``: mount roots plus projected catalog entries."""
        found: dict[str, VirtualItem] = {}
        for mount in self._mounts:
            if mount != paths.ROOT and paths.parent(mount) == path:
                found[mount] = self._folder(mount, mount)

        for mount, catalog in self._mounts.items():
            if not paths.is_same_or_descendant(path, mount):
                continue
            for item in self._project(mount, catalog, path):
                found.setdefault(item.path, item)
        return list(found.values())

    def _project(self, mount: str, catalog: Catalog, path: str) -> list[VirtualItem]:
        if path == mount:
            rel = ""
        else:
            rel = paths.rebase(path, mount, paths.ROOT)[1:]
        try:
            entries = list(catalog.entries())
        except Exception as e:
            logger.warning("Catalog at %s failed to enumerate: %s", mount, e)
            return []

        items: list[VirtualItem] = []
        seen_folders: set[str] = set()
        for entry in entries:
            folder = entry.folder.strip("/")
            if folder == rel:
                items.append(VirtualItem(
                    path=paths.join(path, entry.id),
                    name=entry.name,
                    type=entry.type,
                    icon=entry.icon,
                    mount=mount,
                    external_id=entry.id,
                ))
            elif not rel or folder.startswith(rel + "/"):
                remainder = folder[len(rel):].lstrip("/")
                if not remainder:
                    continue
                segment = remainder.split("/", 1)[0]
                if segment not in seen_folders:
                    seen_folders.add(segment)
                    items.append(self._folder(paths.join(path, segment), mount))
        return items

    @staticmethod
    def _folder(path: str, mount: str) -> VirtualItem:
        return VirtualItem(
            path=path,
            name=paths.basename(path),
            type=VIRTUAL_FOLDER_TYPE,
            mount=mount,
            directory=True,
        )
