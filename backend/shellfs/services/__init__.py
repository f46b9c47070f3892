"""File system services — singleton registry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shellfs.config import settings

if TYPE_CHECKING:
    from shellfs.services.filesystem import FileSystemService
    from shellfs.services.namespace import Catalog, VirtualNamespace
    from shellfs.services.scheduler import MaintenanceScheduler

logger = logging.getLogger(__name__)

_namespace: VirtualNamespace | None = None
_filesystem: FileSystemService | None = None
_scheduler: MaintenanceScheduler | None = None


def _catalog(path: str, default_type: str) -> Catalog:
    from shellfs.services.namespace import JsonFileCatalog, StaticCatalog

    if path:
        return JsonFileCatalog(path, default_type)
    return StaticCatalog()


def build_namespace() -> VirtualNamespace:
    """Mount table: applications, music library, videos, bookmarked sites."""
    from shellfs.services.namespace import VirtualNamespace, builtin_applications

    return VirtualNamespace({
        "/Applications": builtin_applications(),
        "/Music": _catalog(settings.music_catalog_path, "audio"),
        "/Videos": _catalog(settings.videos_catalog_path, "video"),
        "/Sites": _catalog(settings.bookmarks_catalog_path, "site"),
    })


async def init_services(session_factory, start_scheduler: bool = True) -> None:
    """Create and wire up all service singletons."""
    global _namespace, _filesystem, _scheduler

    from shellfs.services.content_store import ContentStore
    from shellfs.services.filesystem import FileSystemService
    from shellfs.services.materializer import HttpContentFetcher, LazyMaterializer, load_manifest
    from shellfs.services.metadata_index import MetadataIndex
    from shellfs.services.scheduler import MaintenanceScheduler

    _namespace = build_namespace()
    store = ContentStore(session_factory)
    index = MetadataIndex(settings.snapshot_path, namespace=_namespace)
    materializer = LazyMaterializer(index, store, HttpContentFetcher())
    _filesystem = FileSystemService(index, store, _namespace, materializer=materializer)

    manifest = load_manifest(settings.seed_manifest_path) if settings.seed_manifest_path else None
    await _filesystem.bootstrap(manifest)
    logger.info("File system ready: %d items, schema v%d", len(index), index.version)
    if not index.persist_enabled:
        logger.warning("Snapshot persistence suspended after a failed migration")

    if start_scheduler:
        _scheduler = MaintenanceScheduler(_filesystem)
        _scheduler.start()


async def shutdown_services() -> None:
    """Stop scheduler and flush the metadata snapshot."""
    global _scheduler, _filesystem
    if _scheduler:
        await _scheduler.stop()
        _scheduler = None
    if _filesystem:
        await _filesystem.index.close()
        _filesystem = None


def get_filesystem() -> FileSystemService:
    if _filesystem is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _filesystem


def get_namespace() -> VirtualNamespace:
    if _namespace is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _namespace
