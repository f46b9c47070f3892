"""Content store — payloads partitioned by content kind, addressed by content id."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shellfs.config import settings
from shellfs.errors import StorageUnavailableError
from shellfs.models.stored_content import StoredContent

logger = logging.getLogger(__name__)

T = TypeVar("T")

BATCH_CHUNK = 500  # ids per IN (...) clause


class ContentKind(str, Enum):
    DOCUMENTS = "documents"
    IMAGES = "images"
    APPLETS = "applets"
    TRASH = "trash"
    WALLPAPERS = "wallpapers"


IMAGE_TYPES = frozenset({"image", "png", "jpg", "jpeg", "gif", "webp", "bmp", "svg"})
APPLET_TYPES = frozenset({"applet", "html"})
WALLPAPER_TYPES = frozenset({"wallpaper"})


def partition_for(item_type: str) -> ContentKind:
    """Route a file type to the partition that owns its content."""
    kind = (item_type or "").lower()
    if kind in IMAGE_TYPES:
        return ContentKind.IMAGES
    if kind in APPLET_TYPES:
        return ContentKind.APPLETS
    if kind in WALLPAPER_TYPES:
        return ContentKind.WALLPAPERS
    return ContentKind.DOCUMENTS


def payload_size(payload: str | bytes) -> int:
    if isinstance(payload, (bytes, bytearray)):
        return len(payload)
    return len(payload.encode("utf-8"))


@dataclass
class ContentRecord:
    name: str
    payload: str | bytes

    @property
    def is_binary(self) -> bool:
        return isinstance(self.payload, (bytes, bytearray))

    @property
    def size(self) -> int:
        return payload_size(self.payload)


@dataclass
class ContentWrite:
    """One pending write for ``batch_put``."""

    content_id: str
    name: str
    payload: str | bytes


def _chunks(ids: list[str]) -> Iterable[list[str]]:
    for start in range(0, len(ids), BATCH_CHUNK):
        yield ids[start:start + BATCH_CHUNK]


def _to_row(kind: ContentKind, content_id: str, name: str, payload: str | bytes) -> StoredContent:
    binary = isinstance(payload, (bytes, bytearray))
    return StoredContent(
        partition=kind.value,
        content_id=content_id,
        name=name,
        is_binary=1 if binary else 0,
        text_payload=None if binary else payload,
        blob_payload=bytes(payload) if binary else None,
        size_bytes=payload_size(payload),
    )


def _to_record(row: StoredContent) -> ContentRecord:
    if row.is_binary:
        return ContentRecord(name=row.name, payload=row.blob_payload or b"")
    return ContentRecord(name=row.name, payload=row.text_payload or "")


class ContentStore:
    """Async key-value store over the ``stored_content`` table.

    Every public operation runs in its own session and commits once, so a
    batch call is a single SQLite transaction. Storage failures are retried
    once after a short backoff and then surface as ``StorageUnavailableError``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry_backoff: float | None = None,
    ):
        self._session_factory = session_factory
        self._retry_backoff = (
            settings.storage_retry_backoff_seconds if retry_backoff is None else retry_backoff
        )

    async def _run(self, op: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        for attempt in (1, 2):
            try:
                async with self._session_factory() as session:
                    return await fn(session)
            except (SQLAlchemyError, OSError) as e:
                if attempt == 1:
                    logger.warning("Content store %s failed, retrying: %s", op, e)
                    await asyncio.sleep(self._retry_backoff)
                    continue
                logger.error("Content store %s failed after retry: %s", op, e)
                raise StorageUnavailableError(f"Content store unavailable during {op}: {e}") from e
        raise AssertionError("unreachable")

    async def put(
        self, content_id: str, name: str, payload: str | bytes, kind: ContentKind | str
    ) -> None:
        kind = ContentKind(kind)

        async def _put(session: AsyncSession) -> None:
            await session.merge(_to_row(kind, content_id, name, payload))
            await session.commit()

        await self._run("put", _put)
        logger.debug("Stored %s/%s (%s)", kind.value, content_id, name)

    async def get(self, content_id: str, kind: ContentKind | str) -> ContentRecord | None:
        kind = ContentKind(kind)

        async def _get(session: AsyncSession) -> ContentRecord | None:
            row = await session.get(StoredContent, (kind.value, content_id))
            return _to_record(row) if row else None

        return await self._run("get", _get)

    async def exists(self, content_id: str, kind: ContentKind | str) -> bool:
        kind = ContentKind(kind)

        async def _exists(session: AsyncSession) -> bool:
            result = await session.execute(
                select(StoredContent.content_id).where(
                    StoredContent.partition == kind.value,
                    StoredContent.content_id == content_id,
                )
            )
            return result.scalar_one_or_none() is not None

        return await self._run("exists", _exists)

    async def delete(self, content_id: str, kind: ContentKind | str) -> None:
        await self.batch_delete([content_id], kind)

    async def batch_put(self, records: list[ContentWrite], kind: ContentKind | str) -> None:
        if not records:
            return
        kind = ContentKind(kind)

        async def _batch_put(session: AsyncSession) -> None:
            for rec in records:
                await session.merge(_to_row(kind, rec.content_id, rec.name, rec.payload))
            await session.commit()

        await self._run("batch_put", _batch_put)
        logger.debug("Stored %d records in %s", len(records), kind.value)

    async def batch_delete(self, content_ids: list[str], kind: ContentKind | str) -> int:
        if not content_ids:
            return 0
        kind = ContentKind(kind)
        ids = list(content_ids)

        async def _batch_delete(session: AsyncSession) -> int:
            deleted = 0
            for chunk in _chunks(ids):
                result = await session.execute(
                    delete(StoredContent).where(
                        StoredContent.partition == kind.value,
                        StoredContent.content_id.in_(chunk),
                    )
                )
                deleted += result.rowcount or 0
            await session.commit()
            return deleted

        return await self._run("batch_delete", _batch_delete)

    async def move(
        self, content_ids: list[str], from_kind: ContentKind | str, to_kind: ContentKind | str
    ) -> int:
        """Relocate records between partitions in one transaction.

        Records already present at the destination are replaced, so a
        repeated move is harmless.
        """
        from_kind, to_kind = ContentKind(from_kind), ContentKind(to_kind)
        if not content_ids or from_kind == to_kind:
            return 0
        ids = list(content_ids)

        async def _move(session: AsyncSession) -> int:
            moved = 0
            for chunk in _chunks(ids):
                await session.execute(
                    delete(StoredContent).where(
                        StoredContent.partition == to_kind.value,
                        StoredContent.content_id.in_(chunk),
                    )
                )
                result = await session.execute(
                    update(StoredContent)
                    .where(
                        StoredContent.partition == from_kind.value,
                        StoredContent.content_id.in_(chunk),
                    )
                    .values(partition=to_kind.value)
                )
                moved += result.rowcount or 0
            await session.commit()
            return moved

        moved = await self._run("move", _move)
        logger.debug("Moved %d records %s -> %s", moved, from_kind.value, to_kind.value)
        return moved

    async def list_ids(self, kind: ContentKind | str | None = None) -> list[tuple[ContentKind, str]]:
        async def _list(session: AsyncSession) -> list[tuple[ContentKind, str]]:
            stmt = select(StoredContent.partition, StoredContent.content_id)
            if kind is not None:
                stmt = stmt.where(StoredContent.partition == ContentKind(kind).value)
            result = await session.execute(stmt)
            return [(ContentKind(p), cid) for p, cid in result.all()]

        return await self._run("list_ids", _list)

    async def clear(self) -> int:
        async def _clear(session: AsyncSession) -> int:
            result = await session.execute(delete(StoredContent))
            await session.commit()
            return result.rowcount or 0

        cleared = await self._run("clear", _clear)
        logger.info("Content store cleared (%d records)", cleared)
        return cleared
