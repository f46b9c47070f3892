"""Metadata index — synchronous path -> item mapping with a debounced JSON snapshot."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

from pydantic import ValidationError

from shellfs.config import settings
from shellfs.errors import (
    ConflictError,
    InvalidTargetError,
    MigrationError,
    NotFoundError,
    ReadOnlyError,
    StorageUnavailableError,
)
from shellfs.schemas.items import FileItem, PersistedItem, VirtualItem, dump_item, persisted_item_adapter
from shellfs.services.content_store import ContentKind, partition_for
from shellfs.services.migrator import SchemaMigrator
from shellfs.utils import paths

if TYPE_CHECKING:
    from shellfs.services.content_store import ContentStore
    from shellfs.services.namespace import VirtualNamespace

logger = logging.getLogger(__name__)


class SortKey(str, Enum):
    NAME = "name"
    DATE = "date"
    SIZE = "size"
    KIND = "kind"


def _sort_value(item: Any, key: SortKey) -> Any:
    if key == SortKey.DATE:
        stamp = item.modified_at or item.created_at
        return stamp.timestamp() if stamp else 0.0
    if key == SortKey.SIZE:
        return getattr(item, "size", None) or 0
    if key == SortKey.KIND:
        return item.type.casefold()
    return item.name.casefold()


def content_partition(item: FileItem) -> ContentKind:
    """Partition currently holding the item's content."""
    return ContentKind.TRASH if item.is_trashed else partition_for(item.type)


def _raw_content_refs(raw_items: Any) -> set[str]:
    """Content ids in raw snapshot records, current (``contentId``) or legacy (``uuid``) keys."""
    if isinstance(raw_items, dict):
        raw_items = list(raw_items.values())
    refs: set[str] = set()
    for raw in raw_items if isinstance(raw_items, list) else []:
        if not isinstance(raw, dict):
            continue
        for key in ("contentId", "uuid"):
            value = raw.get(key)
            if isinstance(value, str) and value:
                refs.add(value)
    return refs


class MetadataIndex:
    """In-memory index of every persisted item, keyed by absolute path.

    A parent -> children map lets subtree operations collect the affected set
    without scanning the whole index. Mutations never suspend, so callers on
    the event loop always observe either the old or the new tree.
    """

    def __init__(
        self,
        snapshot_path: str | Path | None = None,
        namespace: VirtualNamespace | None = None,
        migrator: SchemaMigrator | None = None,
        debounce_seconds: float | None = None,
    ):
        self._snapshot_path = Path(snapshot_path or settings.snapshot_path)
        self._namespace = namespace
        self._migrator = migrator or SchemaMigrator()
        self._debounce = (
            settings.persist_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._items: dict[str, PersistedItem] = {}
        self._children: defaultdict[str, set[str]] = defaultdict(set)
        self._version = self._migrator.current_version
        self._persist_enabled = True
        self._degraded = False
        self._unloaded_refs: set[str] = set()
        self._dirty = False
        self._persist_task: asyncio.Task | None = None

    @property
    def version(self) -> int:
        return self._version

    @property
    def persist_enabled(self) -> bool:
        return self._persist_enabled

    @property
    def degraded(self) -> bool:
        """True when the last load could not bring every stored record into memory."""
        return self._degraded

    @property
    def unloaded_content_ids(self) -> frozenset[str]:
        """Content ids named by snapshot records that failed to load."""
        return frozenset(self._unloaded_refs)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, path: str) -> bool:
        return path in self._items

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, path: str) -> PersistedItem | VirtualItem | None:
        item = self._items.get(path)
        if item is None and self._namespace is not None:
            return self._namespace.get(path)
        return item

    def get_physical(self, path: str) -> PersistedItem | None:
        return self._items.get(path)

    def list(
        self,
        path: str,
        sort: SortKey | str = SortKey.NAME,
        descending: bool = False,
    ) -> list[PersistedItem | VirtualItem]:
        """Direct children of ``path`` merged with virtual entries mounted there."""
        merged: dict[str, Any] = {p: self._items[p] for p in self._children.get(path, ())}
        if self._namespace is not None:
            for item in self._namespace.list(path):
                merged.setdefault(item.path, item)

        key = SortKey(sort)
        ordered = sorted(merged.values(), key=lambda i: (i.name.casefold(), i.path))
        if key != SortKey.NAME or descending:
            ordered.sort(key=lambda i: _sort_value(i, key), reverse=descending)
        return ordered

    def descendants(self, path: str) -> list[PersistedItem]:
        """Every record strictly below ``path``, parents before children."""
        result: list[PersistedItem] = []
        queue = sorted(self._children.get(path, ()))
        while queue:
            child = queue.pop(0)
            item = self._items.get(child)
            if item is None:
                continue
            result.append(item)
            queue.extend(sorted(self._children.get(child, ())))
        return result

    def items(self) -> list[PersistedItem]:
        return list(self._items.values())

    def trashed(self) -> list[PersistedItem]:
        return [item for item in self._items.values() if item.is_trashed]

    def find_trashed_by_original(self, original_path: str) -> PersistedItem | None:
        """Most recently trashed item that came from ``original_path``."""
        matches = [
            item for item in self._items.values()
            if item.is_trashed and item.original_path == original_path
        ]
        if not matches:
            return None
        return max(matches, key=lambda i: i.deleted_at.timestamp() if i.deleted_at else 0.0)

    def referenced_content(self) -> set[tuple[ContentKind, str]]:
        """(partition, content id) pairs referenced by the index."""
        refs: set[tuple[ContentKind, str]] = set()
        for item in self._items.values():
            if isinstance(item, FileItem) and item.content_id:
                refs.add((content_partition(item), item.content_id))
        return refs

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_writable(self, path: str) -> None:
        if self._namespace is not None:
            self._namespace.ensure_writable(path)

    def _attach(self, item: PersistedItem) -> None:
        self._items[item.path] = item
        if item.path != paths.ROOT:
            self._children[paths.parent(item.path)].add(item.path)

    def _detach(self, path: str) -> PersistedItem | None:
        item = self._items.pop(path, None)
        if item is not None and path != paths.ROOT:
            siblings = self._children.get(paths.parent(path))
            if siblings is not None:
                siblings.discard(path)
        if not self._children.get(path):
            self._children.pop(path, None)
        return item

    def upsert(self, item: PersistedItem, create_only: bool = False) -> PersistedItem:
        if isinstance(item, VirtualItem):
            raise ReadOnlyError("Virtual items cannot be stored", item.path)
        self._check_writable(item.path)

        existing = self._items.get(item.path)
        if create_only and existing is not None and not existing.is_trashed:
            raise ConflictError(f"{item.path} already exists", item.path)

        self._attach(item)
        self._mark_dirty()
        return item

    def remove(self, path: str) -> PersistedItem | None:
        """Hard removal of one metadata record. Content is not touched."""
        self._check_writable(path)
        item = self._detach(path)
        if item is not None:
            self._mark_dirty()
        return item

    def rename(self, old_path: str, new_path: str) -> list[tuple[PersistedItem, PersistedItem]]:
        """Re-path ``old_path`` and its whole subtree to ``new_path``.

        Returns ``(before, after)`` pairs, the renamed item first.
        """
        self._check_writable(old_path)
        self._check_writable(new_path)

        item = self._items.get(old_path)
        if item is None:
            raise NotFoundError(f"{old_path} not found", old_path)
        if new_path == old_path:
            return []
        if new_path in self._items:
            raise ConflictError(f"{new_path} already exists", new_path)
        if paths.is_descendant(new_path, old_path):
            raise InvalidTargetError(f"Cannot move {old_path} into itself", new_path)

        subtree = [item, *self.descendants(old_path)]
        pairs = []
        for before in subtree:
            update: dict[str, Any] = {"path": paths.rebase(before.path, old_path, new_path)}
            if before is item:
                update["name"] = paths.basename(new_path)
            pairs.append((before, before.model_copy(update=update)))

        self.replace_subtree([b.path for b, _ in pairs], [a for _, a in pairs])
        logger.debug("Renamed %s -> %s (%d records)", old_path, new_path, len(pairs))
        return pairs

    def replace_subtree(self, old_paths: Iterable[str], new_items: Iterable[PersistedItem]) -> None:
        """Swap a set of records in one step (cascades and their rollbacks)."""
        for path in old_paths:
            self._detach(path)
        for item in new_items:
            self._attach(item)
        self._mark_dirty()

    def clear(self) -> None:
        self._items.clear()
        self._children.clear()
        self._mark_dirty()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _mark_dirty(self) -> None:
        self._dirty = True
        self.schedule_persist()

    def schedule_persist(self) -> None:
        """Debounce a snapshot write on the running loop (no-op without one)."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._persist_task is None or self._persist_task.done():
            self._persist_task = loop.create_task(self._persist_later())

    async def _persist_later(self) -> None:
        await asyncio.sleep(self._debounce)
        self.flush()

    def snapshot(self) -> dict[str, Any]:
        return {
            "version": self._version,
            "savedAt": datetime.now(timezone.utc).isoformat(),
            "items": [dump_item(self._items[p]) for p in sorted(self._items)],
        }

    def flush(self) -> bool:
        """Write the snapshot now. Returns False when persistence is suspended."""
        if not self._persist_enabled:
            logger.debug("Snapshot persistence suspended — skipping flush")
            return False
        self._snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._snapshot_path.with_name(self._snapshot_path.name + ".tmp")
        tmp.write_text(json.dumps(self.snapshot(), indent=2), encoding="utf-8")
        os.replace(tmp, self._snapshot_path)
        self._dirty = False
        logger.debug("Snapshot persisted (%d items) to %s", len(self._items), self._snapshot_path)
        return True

    async def close(self) -> None:
        if self._persist_task is not None and not self._persist_task.done():
            self._persist_task.cancel()
            try:
                await self._persist_task
            except asyncio.CancelledError:
                pass
        self._persist_task = None
        if self._dirty:
            self.flush()

    async def load(self, content_store: ContentStore | None = None) -> bool:
        """Load and migrate the snapshot. Returns False when none exists."""
        if not self._snapshot_path.exists():
            logger.info("No metadata snapshot at %s — starting empty", self._snapshot_path)
            return False

        try:
            document = json.loads(self._snapshot_path.read_text(encoding="utf-8"))
            if not isinstance(document, dict):
                raise ValueError("snapshot is not an object")
        except (json.JSONDecodeError, ValueError) as e:
            backup = self._snapshot_path.with_name(self._snapshot_path.name + ".corrupt")
            os.replace(self._snapshot_path, backup)
            logger.warning("Corrupt metadata snapshot moved to %s: %s", backup, e)
            self._degraded = True
            return False

        try:
            result = self._migrator.migrate(document)
            if content_store is not None:
                await self._apply_content_writes(result.content_writes, content_store)
        except MigrationError as e:
            logger.error("Schema migration aborted, keeping the previous snapshot: %s", e)
            self._persist_enabled = False
            self._degraded = True
            self._unloaded_refs = _raw_content_refs(document.get("items", []))
            try:
                self._version = int(document.get("version", 1))
            except (TypeError, ValueError):
                self._version = 1
            self._populate(document.get("items", []))
            return True

        self._version = result.to_version
        self._populate(result.document.get("items", []))
        if result.migrated:
            logger.info("Metadata snapshot migrated v%d -> v%d", result.from_version, result.to_version)
            self.flush()
        return True

    async def _apply_content_writes(self, writes, content_store: ContentStore) -> None:
        by_kind: defaultdict[ContentKind, list] = defaultdict(list)
        for kind, write in writes:
            by_kind[kind].append(write)
        try:
            for kind, batch in by_kind.items():
                await content_store.batch_put(batch, kind)
        except StorageUnavailableError as e:
            raise MigrationError(f"Could not store migrated content: {e}") from e

    def _populate(self, raw_items: Any) -> None:
        self._items.clear()
        self._children.clear()
        if isinstance(raw_items, dict):
            raw_items = list(raw_items.values())
        skipped = 0
        for raw in raw_items or []:
            try:
                self._attach(persisted_item_adapter.validate_python(raw))
            except ValidationError as e:
                skipped += 1
                self._unloaded_refs |= _raw_content_refs([raw])
                logger.warning("Skipping unreadable metadata record %r: %s", raw.get("path") if isinstance(raw, dict) else raw, e)
        self._dirty = False
        logger.info("Metadata index loaded: %d items (%d skipped)", len(self._items), skipped)
