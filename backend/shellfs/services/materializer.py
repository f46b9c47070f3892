"""Lazy materialization — bulk-seeded files fetched on first read."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Protocol
from urllib.parse import urljoin

import httpx

from shellfs.config import settings
from shellfs.errors import NotFoundError, ReadOnlyError, StorageUnavailableError
from shellfs.schemas.items import FileItem, FolderItem
from shellfs.services.content_store import IMAGE_TYPES, ContentRecord, payload_size
from shellfs.services.metadata_index import content_partition
from shellfs.utils import paths

if TYPE_CHECKING:
    from shellfs.services.content_store import ContentStore
    from shellfs.services.metadata_index import MetadataIndex

logger = logging.getLogger(__name__)

BINARY_TYPES = IMAGE_TYPES | {"wallpaper", "audio", "video", "binary"}


@dataclass(frozen=True)
class ManifestEntry:
    path: str
    ref: str
    type: str = "text"
    icon: str | None = None


def load_manifest(path: str | Path) -> list[ManifestEntry]:
    """Read a JSON list of ``{path, ref, type?, icon?}`` objects."""
    manifest_file = Path(path)
    if not manifest_file.exists():
        logger.info("No seed manifest at %s", manifest_file)
        return []
    data = json.loads(manifest_file.read_text(encoding="utf-8"))
    return [
        ManifestEntry(
            path=raw["path"],
            ref=raw["ref"],
            type=raw.get("type", "text"),
            icon=raw.get("icon"),
        )
        for raw in data
        if isinstance(raw, dict) and raw.get("path") and raw.get("ref")
    ]


class ContentFetcher(Protocol):
    async def fetch(self, ref: str, item_type: str) -> str | bytes: ...


class HttpContentFetcher:
    """Fetches seeded content over HTTP; relative refs resolve against ``base_url``."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self._base_url = base_url if base_url is not None else settings.lazy_fetch_base_url
        self._timeout = timeout or settings.lazy_fetch_timeout_seconds

    def resolve(self, ref: str) -> str:
        if self._base_url and "://" not in ref:
            return urljoin(self._base_url.rstrip("/") + "/", ref.lstrip("/"))
        return ref

    async def fetch(self, ref: str, item_type: str) -> str | bytes:
        url = self.resolve(ref)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NotFoundError(f"Seed content missing at {url}") from e
            raise StorageUnavailableError(f"Seed fetch failed for {url}: {e}") from e
        except httpx.HTTPError as e:
            raise StorageUnavailableError(f"Seed fetch failed for {url}: {e}") from e

        if item_type.lower() in BINARY_TYPES:
            return resp.content
        return resp.text


class LazyMaterializer:
    """Registers manifest entries without content and materializes them on demand.

    Concurrent first reads of one path share a single task. Waiters are
    shielded so an abandoned waiter never cancels the fetch or the write.
    """

    def __init__(self, index: MetadataIndex, store: ContentStore, fetcher: ContentFetcher):
        self._index = index
        self._store = store
        self._fetcher = fetcher
        self._in_flight: dict[str, asyncio.Task] = {}

    def register(self, manifest: Iterable[ManifestEntry]) -> int:
        """Record entries as pending files. Paths that already exist are left alone."""
        now = datetime.now(timezone.utc)
        registered = 0
        for entry in manifest:
            path = paths.normalize(entry.path)
            if path in self._index:
                continue
            try:
                self._ensure_parents(path, now)
                self._index.upsert(FileItem(
                    path=path,
                    name=paths.basename(path),
                    type=entry.type,
                    icon=entry.icon,
                    source_ref=entry.ref,
                    created_at=now,
                    modified_at=now,
                ))
            except ReadOnlyError as e:
                logger.warning("Skipping seed entry %s: %s", path, e)
                continue
            registered += 1

        if registered:
            logger.info("Registered %d lazily seeded files", registered)
        return registered

    def _ensure_parents(self, path: str, now: datetime) -> None:
        missing: list[str] = []
        current = paths.parent(path)
        while current not in self._index:
            missing.append(current)
            if current == paths.ROOT:
                break
            current = paths.parent(current)
        for folder in reversed(missing):
            self._index.upsert(FolderItem(
                path=folder,
                name=paths.basename(folder) or folder,
                created_at=now,
                modified_at=now,
            ))

    def is_pending(self, path: str) -> bool:
        item = self._index.get_physical(path)
        return isinstance(item, FileItem) and item.is_pending

    def is_in_flight(self, path: str) -> bool:
        return path in self._in_flight

    async def materialize(self, path: str) -> ContentRecord:
        task = self._in_flight.get(path)
        if task is None:
            task = asyncio.create_task(self._materialize(path))
            self._in_flight[path] = task
            task.add_done_callback(lambda t, p=path: self._forget(p, t))
        return await asyncio.shield(task)

    def _forget(self, path: str, task: asyncio.Task) -> None:
        if self._in_flight.get(path) is task:
            del self._in_flight[path]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Materialization of %s failed: %s", path, task.exception())

    async def _materialize(self, path: str) -> ContentRecord:
        item = self._index.get_physical(path)
        if not isinstance(item, FileItem):
            raise NotFoundError(f"{path} not found", path)
        if not item.is_pending:
            return await self._read_current(path)

        ref = item.source_ref
        logger.info("Materializing %s from %s", path, ref)
        payload = await self._fetcher.fetch(ref, item.type)

        current = self._index.get_physical(path)
        if not (isinstance(current, FileItem) and current.is_pending and current.source_ref == ref):
            logger.info("Discarding fetched content for %s: item changed while fetching", path)
            return await self._read_current(path)

        content_id = str(uuid.uuid4())
        await self._store.put(content_id, current.name, payload, content_partition(current))

        latest = self._index.get_physical(path)
        if latest is not current:
            # content written above is left for reconciliation
            logger.info("Item %s changed while storing fetched content", path)
            return await self._read_current(path)

        self._index.upsert(current.model_copy(update={
            "content_id": content_id,
            "size": payload_size(payload),
            "source_ref": None,
        }))
        return ContentRecord(name=current.name, payload=payload)

    async def _read_current(self, path: str) -> ContentRecord:
        item = self._index.get_physical(path)
        if isinstance(item, FileItem) and item.content_id:
            record = await self._store.get(item.content_id, content_partition(item))
            if record is not None:
                return record
        raise NotFoundError(f"No content for {path}", path)
