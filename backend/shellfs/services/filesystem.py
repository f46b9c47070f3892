"""Lifecycle manager — the public file system contract over metadata and content.

Every mutating operation is a short saga across the two layers:

* create/save: content first, then metadata. A failed content write leaves
  metadata untouched; a failed metadata commit leaves an orphan record for
  ``reconcile()``.
* trash/restore/purge: the metadata flip is the visible commit point, the
  content move follows and the flip is rolled back if the move fails.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable

from shellfs.errors import (
    ConflictError,
    FileSystemError,
    InvalidTargetError,
    NotFoundError,
    StorageUnavailableError,
)
from shellfs.schemas.items import AliasItem, AliasKind, FileItem, FolderItem, ItemStatus
from shellfs.services.content_store import ContentKind, ContentRecord, partition_for, payload_size
from shellfs.services.events import EventBus, EventKind, FileSystemEvent
from shellfs.services.metadata_index import SortKey, content_partition
from shellfs.services.migrator import WELL_KNOWN_ICONS
from shellfs.utils import paths

if TYPE_CHECKING:
    from shellfs.services.content_store import ContentStore
    from shellfs.services.materializer import LazyMaterializer, ManifestEntry
    from shellfs.services.metadata_index import MetadataIndex
    from shellfs.services.namespace import VirtualNamespace

logger = logging.getLogger(__name__)

DEFAULT_FOLDERS = ("/", "/Documents", "/Images", "/Applets", "/Desktop", paths.TRASH_ROOT)
PROTECTED_PATHS = frozenset(DEFAULT_FOLDERS)
MAX_ALIAS_DEPTH = 8

EXTENSION_TYPES = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".txt": "text",
    ".html": "html",
    ".htm": "html",
    ".app": "applet",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
    ".gif": "image",
    ".webp": "image",
    ".bmp": "image",
    ".svg": "image",
}


def infer_type(name: str) -> str:
    _, ext = paths.split_ext(name)
    return EXTENSION_TYPES.get(ext.lower(), "text")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _group_content(items: Iterable, partition_of) -> dict[ContentKind, list[str]]:
    groups: defaultdict[ContentKind, list[str]] = defaultdict(list)
    for item in items:
        if isinstance(item, FileItem) and item.content_id:
            groups[partition_of(item)].append(item.content_id)
    return groups


class FileSystemService:
    """Create, rename, move, trash, restore and purge across both storage layers."""

    def __init__(
        self,
        index: MetadataIndex,
        store: ContentStore,
        namespace: VirtualNamespace,
        materializer: LazyMaterializer | None = None,
        events: EventBus | None = None,
    ):
        self._index = index
        self._store = store
        self._namespace = namespace
        self._materializer = materializer
        self._events = events or EventBus()
        self._pending_content: set[str] = set()

    @property
    def index(self) -> MetadataIndex:
        return self._index

    @property
    def store(self) -> ContentStore:
        return self._store

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def materializer(self) -> LazyMaterializer | None:
        return self._materializer

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def bootstrap(self, manifest: Iterable[ManifestEntry] | None = None) -> None:
        """Load the snapshot, seed the well-known layout, register lazy seeds."""
        await self._index.load(self._store)
        self.seed_defaults()
        if manifest is not None:
            self.register_manifest(manifest)

    def seed_defaults(self) -> int:
        now = _now()
        created = 0
        for folder in DEFAULT_FOLDERS:
            if folder in self._index:
                continue
            self._index.upsert(FolderItem(
                path=folder,
                name=paths.basename(folder) or folder,
                icon=WELL_KNOWN_ICONS.get(folder),
                created_at=now,
                modified_at=now,
            ))
            created += 1
        if created:
            logger.info("Seeded %d default folders", created)
        return created

    def register_manifest(self, manifest: Iterable[ManifestEntry]) -> int:
        if self._materializer is None:
            raise RuntimeError("No materializer configured")
        return self._materializer.register(manifest)

    def subscribe(self, listener, kinds: Iterable[EventKind] | None = None):
        return self._events.subscribe(listener, kinds)

    def _emit(self, kind: EventKind, new_path: str, name: str, old_path: str | None = None) -> None:
        self._events.emit(FileSystemEvent(kind=kind, new_path=new_path, name=name, old_path=old_path))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, path: str):
        path = paths.normalize(path)
        item = self._index.get(path)
        if item is None:
            raise NotFoundError(f"{path} not found", path)
        return item

    def list(self, path: str = paths.ROOT, sort: SortKey | str = SortKey.NAME, descending: bool = False):
        item = self.get(path)
        if not item.is_directory:
            raise InvalidTargetError(f"{item.path} is not a directory", item.path)
        return self._index.list(item.path, sort=sort, descending=descending)

    async def read(self, path: str) -> ContentRecord:
        item = self.get(path)
        for _ in range(MAX_ALIAS_DEPTH):
            if not isinstance(item, AliasItem):
                break
            if item.alias_kind != AliasKind.FILE:
                raise InvalidTargetError(f"{item.path} is an application shortcut", item.path)
            item = self.get(item.alias_target)
        else:
            raise InvalidTargetError(f"Too many alias hops from {path}", path)

        if not isinstance(item, FileItem):
            raise InvalidTargetError(f"{item.path} has no readable content", item.path)
        if item.is_pending and self._materializer is not None:
            return await self._materializer.materialize(item.path)
        if not item.content_id:
            raise NotFoundError(f"No content stored for {item.path}", item.path)

        record = await self._store.get(item.content_id, content_partition(item))
        if record is None:
            # trash/restore content move not finished or rolled back
            alternate = partition_for(item.type) if item.is_trashed else ContentKind.TRASH
            record = await self._store.get(item.content_id, alternate)
        if record is None:
            raise NotFoundError(f"Content {item.content_id} for {item.path} is missing", item.path)
        return record

    # ------------------------------------------------------------------
    # Create / save
    # ------------------------------------------------------------------

    def _require_parent_dir(self, path: str) -> None:
        parent = self._index.get_physical(paths.parent(path))
        if parent is None or not parent.is_directory or parent.is_trashed:
            raise InvalidTargetError(f"Parent of {path} is missing or not a directory", path)

    def _check_save_target(self, path: str, current, create_only: bool) -> None:
        if current is None:
            return
        if create_only:
            raise ConflictError(f"{path} already exists", path)
        if not isinstance(current, FileItem):
            raise InvalidTargetError(f"{path} is not a file", path)

    def _check_creatable(self, path: str) -> str:
        path = paths.normalize(path)
        self._namespace.ensure_writable(path)
        if path == paths.ROOT or paths.is_same_or_descendant(path, paths.TRASH_ROOT):
            raise InvalidTargetError(f"Cannot create {path}", path)
        return path

    async def save(
        self,
        path: str,
        content: str | bytes,
        type: str | None = None,
        create_only: bool = False,
    ) -> FileItem:
        """Write a file, creating it when absent.

        Existing files keep their content id unless the new type routes the
        payload to another partition. If the path changes hands while the
        payload is being written, the last writer wins under a fresh id.
        """
        path = self._check_creatable(path)
        existing = self._index.get_physical(path)
        self._check_save_target(path, existing, create_only)
        self._require_parent_dir(path)

        name = paths.basename(path)
        item_type = type or (existing.type if existing is not None else infer_type(name))
        kind = partition_for(item_type)
        # a type change to another partition gets a fresh id; the old record is reclaimed by reconcile()
        reuse = (
            existing is not None
            and existing.content_id is not None
            and partition_for(existing.type) == kind
        )
        content_id = existing.content_id if reuse else str(uuid.uuid4())
        written: list[str] = []

        try:
            while True:
                self._pending_content.add(content_id)
                written.append(content_id)
                await self._store.put(content_id, name, content, kind)

                current = self._index.get_physical(path)
                if current is existing:
                    break
                # path changed hands while writing; last writer wins
                self._check_save_target(path, current, create_only)
                existing = current
                if not reuse:
                    break
                # the reused id may now belong to a trashed or moved record
                logger.info("%s changed while saving; writing under a new content id", path)
                reuse = False
                content_id = str(uuid.uuid4())

            self._require_parent_dir(path)
            now = _now()
            item = FileItem(
                path=path,
                name=name,
                type=item_type,
                icon=existing.icon if existing is not None else None,
                content_id=content_id,
                size=payload_size(content),
                created_at=existing.created_at if existing is not None and existing.created_at else now,
                modified_at=now,
            )
            try:
                self._index.upsert(item, create_only=create_only)
            except FileSystemError:
                logger.warning("Metadata commit failed for %s; content %s left for reconciliation", path, content_id)
                raise
        finally:
            self._pending_content.difference_update(written)

        self._emit(EventKind.CONTENT_UPDATED if existing is not None else EventKind.CREATED, path, name)
        logger.debug("Saved %s (%d bytes, %s/%s)", path, item.size, kind.value, content_id)
        return item

    async def create(self, path: str, content: str | bytes, type: str | None = None) -> FileItem:
        """Create-only save: an existing active path is a ``ConflictError``."""
        return await self.save(path, content, type, create_only=True)

    def create_folder(self, path: str) -> FolderItem:
        path = self._check_creatable(path)
        if self._index.get_physical(path) is not None:
            raise ConflictError(f"{path} already exists", path)
        self._require_parent_dir(path)

        now = _now()
        folder = FolderItem(path=path, name=paths.basename(path), created_at=now, modified_at=now)
        self._index.upsert(folder, create_only=True)
        self._emit(EventKind.CREATED, path, folder.name)
        return folder

    def create_alias(self, path: str, target: str, alias_kind: AliasKind | str = AliasKind.FILE) -> AliasItem:
        """Desktop shortcut to a file path or an application id."""
        path = self._check_creatable(path)
        if self._index.get_physical(path) is not None:
            raise ConflictError(f"{path} already exists", path)
        self._require_parent_dir(path)

        alias_kind = AliasKind(alias_kind)
        if alias_kind == AliasKind.FILE:
            target = paths.normalize(target)
        now = _now()
        alias = AliasItem(
            path=path,
            name=paths.basename(path),
            alias_target=target,
            alias_kind=alias_kind,
            created_at=now,
            modified_at=now,
        )
        self._index.upsert(alias, create_only=True)
        self._emit(EventKind.CREATED, path, alias.name)
        return alias

    # ------------------------------------------------------------------
    # Rename / move
    # ------------------------------------------------------------------

    def _active_item(self, path: str):
        path = paths.normalize(path)
        self._namespace.ensure_writable(path)
        item = self._index.get_physical(path)
        if item is None:
            raise NotFoundError(f"{path} not found", path)
        if path in PROTECTED_PATHS:
            raise InvalidTargetError(f"{path} is a system folder", path)
        if item.is_trashed:
            raise InvalidTargetError(f"{path} is in the trash", path)
        return item

    def rename(self, path: str, new_name: str):
        item = self._active_item(path)
        new_path = paths.join(paths.parent(item.path), paths.validate_name(new_name))
        if new_path == item.path:
            return item

        self._index.rename(item.path, new_path)
        renamed = self._index.get_physical(new_path)
        self._emit(EventKind.RENAMED, new_path, renamed.name, old_path=item.path)
        return renamed

    def move(self, path: str, new_parent: str):
        item = self._active_item(path)
        dest = paths.normalize(new_parent)
        self._namespace.ensure_writable(dest)

        dest_item = self._index.get_physical(dest)
        if dest_item is None or not dest_item.is_directory or dest_item.is_trashed:
            raise InvalidTargetError(f"{dest} is not an existing directory", dest)
        if paths.is_same_or_descendant(dest, paths.TRASH_ROOT):
            raise InvalidTargetError("Use trash() to move items into the trash", dest)
        if paths.is_same_or_descendant(dest, item.path):
            raise InvalidTargetError(f"Cannot move {item.path} into itself", dest)

        new_path = paths.join(dest, item.name)
        if new_path == item.path:
            return item

        self._index.rename(item.path, new_path)
        moved = self._index.get_physical(new_path)
        self._emit(EventKind.RENAMED, new_path, moved.name, old_path=item.path)
        return moved

    # ------------------------------------------------------------------
    # Trash / restore / purge
    # ------------------------------------------------------------------

    def _unique_trash_path(self, name: str) -> str:
        candidate = paths.join(paths.TRASH_ROOT, name)
        stem, ext = paths.split_ext(name)
        counter = 2
        while candidate in self._index:
            candidate = paths.join(paths.TRASH_ROOT, f"{stem} {counter}{ext}")
            counter += 1
        return candidate

    async def _move_groups(self, groups: dict[ContentKind, list[str]], to_trash: bool) -> None:
        """Move content between origin partitions and the trash, undoing on failure."""
        done: list[ContentKind] = []
        try:
            for kind, ids in groups.items():
                if to_trash:
                    await self._store.move(ids, kind, ContentKind.TRASH)
                else:
                    await self._store.move(ids, ContentKind.TRASH, kind)
                done.append(kind)
        except StorageUnavailableError:
            for kind in done:
                try:
                    if to_trash:
                        await self._store.move(groups[kind], ContentKind.TRASH, kind)
                    else:
                        await self._store.move(groups[kind], kind, ContentKind.TRASH)
                except StorageUnavailableError as e:
                    logger.error("Could not undo content move for %s: %s", kind.value, e)
            raise

    async def trash(self, path: str) -> FileItem | FolderItem | AliasItem:
        """Soft-delete an item and its subtree into the trash namespace."""
        item = self._active_item(path)
        if paths.TRASH_ROOT not in self._index:
            self.seed_defaults()

        now = _now()
        trash_path = self._unique_trash_path(item.name)
        subtree = [item, *self._index.descendants(item.path)]
        trashed = [
            it.model_copy(update={
                "path": paths.rebase(it.path, item.path, trash_path),
                "status": ItemStatus.TRASHED,
                "original_path": it.path,
                "deleted_at": now,
            })
            for it in subtree
        ]

        self._index.replace_subtree([it.path for it in subtree], trashed)
        try:
            await self._move_groups(_group_content(subtree, lambda i: partition_for(i.type)), to_trash=True)
        except StorageUnavailableError:
            logger.error("Trash of %s failed; metadata rolled back", item.path)
            self._index.replace_subtree([it.path for it in trashed], subtree)
            raise

        self._emit(EventKind.TRASHED, trash_path, item.name, old_path=item.path)
        logger.info("Trashed %s -> %s (%d items)", item.path, trash_path, len(subtree))
        return trashed[0]

    def _find_trashed(self, path: str):
        path = paths.normalize(path)
        item = self._index.get_physical(path)
        if item is not None and item.is_trashed:
            return item
        if item is None or not paths.is_descendant(path, paths.TRASH_ROOT):
            by_original = self._index.find_trashed_by_original(path)
            if by_original is not None:
                return by_original
        if item is None:
            raise NotFoundError(f"{path} is not in the trash", path)
        raise InvalidTargetError(f"{path} is not in the trash", path)

    def _missing_ancestors(self, path: str, now: datetime) -> list[FolderItem]:
        missing: list[FolderItem] = []
        current = paths.parent(path)
        while current not in self._index:
            missing.append(FolderItem(path=current, name=paths.basename(current), created_at=now, modified_at=now))
            current = paths.parent(current)
        return list(reversed(missing))

    async def restore(self, path: str) -> FileItem | FolderItem | AliasItem:
        """Return a trashed item (by trash path or original path) to where it came from."""
        item = self._find_trashed(path)
        target = item.original_path
        self._namespace.ensure_writable(target)
        if target in self._index:
            raise ConflictError(f"{target} is occupied", target)
        parent = self._index.get_physical(paths.parent(target))
        if parent is not None and (not parent.is_directory or parent.is_trashed):
            raise InvalidTargetError(f"Cannot restore into {paths.parent(target)}", target)

        now = _now()
        subtree = [item, *self._index.descendants(item.path)]
        ancestors = self._missing_ancestors(target, now)
        restored = [
            it.model_copy(update={
                "path": paths.rebase(it.path, item.path, target),
                "status": ItemStatus.ACTIVE,
                "original_path": None,
                "deleted_at": None,
            })
            for it in subtree
        ]

        self._index.replace_subtree([it.path for it in subtree], [*ancestors, *restored])
        try:
            await self._move_groups(_group_content(restored, lambda i: partition_for(i.type)), to_trash=False)
        except StorageUnavailableError:
            logger.error("Restore of %s failed; metadata rolled back", target)
            self._index.replace_subtree([it.path for it in [*ancestors, *restored]], subtree)
            raise

        self._emit(EventKind.RESTORED, target, restored[0].name, old_path=item.path)
        logger.info("Restored %s -> %s (%d items)", item.path, target, len(subtree))
        return restored[0]

    async def _purge_items(self, items: list) -> int:
        ids = [it.content_id for it in items if isinstance(it, FileItem) and it.content_id]
        await self._store.batch_delete(ids, ContentKind.TRASH)
        for it in sorted(items, key=lambda i: i.path.count("/"), reverse=True):
            self._index.remove(it.path)
        return len(items)

    async def purge(self, path: str) -> int:
        """Permanently delete one trashed item and everything below it."""
        item = self._find_trashed(path)
        subtree = [item, *self._index.descendants(item.path)]
        count = await self._purge_items(subtree)
        self._emit(EventKind.DELETED, item.path, item.name, old_path=item.original_path)
        return count

    async def empty_trash(self) -> dict[str, int]:
        trashed = self._index.trashed()
        top_level = [it for it in trashed if paths.parent(it.path) == paths.TRASH_ROOT]
        count = await self._purge_items(trashed)
        leftovers = []
        if not self._index.degraded:
            leftovers = [
                cid for _, cid in await self._store.list_ids(ContentKind.TRASH)
                if cid not in self._index.unloaded_content_ids
            ]
        if leftovers:
            await self._store.batch_delete(leftovers, ContentKind.TRASH)
        for it in top_level:
            self._emit(EventKind.DELETED, it.path, it.name, old_path=it.original_path)
        logger.info("Emptied trash (%d items)", count)
        return {"count": count}

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def format(self) -> None:
        """Clear both layers and reseed the default layout."""
        logger.warning("Formatting file system — all metadata and content will be removed")
        await self._store.clear()
        self._index.clear()
        self.seed_defaults()
        self._index.flush()

    async def reconcile(self) -> dict[str, int]:
        """Delete stored content that no metadata record references.

        Skipped entirely while the index holds a partial view of the snapshot.
        """
        if self._index.degraded:
            logger.warning("Metadata snapshot not fully loaded; skipping content reconciliation")
            return {"deleted": 0}

        referenced = {cid for _, cid in self._index.referenced_content()}
        referenced |= self._index.unloaded_content_ids
        orphans: defaultdict[ContentKind, list[str]] = defaultdict(list)
        for kind, content_id in await self._store.list_ids():
            if content_id not in referenced and content_id not in self._pending_content:
                orphans[kind].append(content_id)

        deleted = 0
        for kind, ids in orphans.items():
            deleted += await self._store.batch_delete(ids, kind)
        if deleted:
            logger.info("Reconciliation removed %d orphaned content records", deleted)
        return {"deleted": deleted}
