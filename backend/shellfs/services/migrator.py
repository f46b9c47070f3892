"""Schema migrator — ordered, idempotent upgrades of the metadata snapshot document."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from shellfs.errors import MigrationError
from shellfs.services.content_store import ContentKind, ContentWrite, partition_for, payload_size

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 5

# uuid5 namespace for identifiers derived from legacy paths
CONTENT_ID_NAMESPACE = uuid.UUID("6f2b6a52-2a4e-4f57-9b37-5d1f0c0b8e11")

WELL_KNOWN_ICONS: dict[str, str] = {
    "/Documents": "/icons/default/documents.png",
    "/Images": "/icons/default/images.png",
    "/Applets": "/icons/default/applets.png",
    "/Desktop": "/icons/default/desktop.png",
    "/Trash": "/icons/default/trash-empty.png",
}


@dataclass
class MigrationContext:
    now: datetime
    content_writes: list[tuple[ContentKind, ContentWrite]] = field(default_factory=list)


@dataclass(frozen=True)
class MigrationStep:
    to_version: int
    description: str
    apply: Callable[[dict[str, Any], MigrationContext], dict[str, Any]]


@dataclass
class MigrationResult:
    document: dict[str, Any]
    from_version: int
    to_version: int
    content_writes: list[tuple[ContentKind, ContentWrite]]

    @property
    def migrated(self) -> bool:
        return self.from_version != self.to_version


def _items(doc: dict[str, Any]) -> list[dict[str, Any]]:
    return [dict(item) for item in doc.get("items", [])]


def _backfill_status_and_variant(doc: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    """v2: list-shaped items, explicit status and variant, ``uuid`` renamed to ``contentId``."""
    raw = doc.get("items", [])
    if isinstance(raw, dict):
        raw = [dict(item, path=item.get("path", path)) for path, item in raw.items()]

    items = []
    for item in raw:
        item = dict(item)
        item.setdefault("status", "active")
        if "uuid" in item:
            legacy_id = item.pop("uuid")
            item.setdefault("contentId", legacy_id)
        if "variant" not in item:
            if item.get("aliasTarget"):
                item["variant"] = "alias"
            elif item.get("isDirectory"):
                item["variant"] = "folder"
            else:
                item["variant"] = "file"
        items.append(item)
    return {**doc, "items": items}


def _lift_inline_content(doc: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    """v3: move inline payloads into the content store and assign missing content ids."""
    items = _items(doc)
    for item in items:
        if item.get("variant") != "file":
            item.pop("content", None)
            continue
        inline = item.pop("content", None)
        if item.get("sourceRef") and not item.get("contentId") and not inline:
            continue
        if inline is None and item.get("contentId"):
            continue

        content_id = item.get("contentId") or str(uuid.uuid5(CONTENT_ID_NAMESPACE, item["path"]))
        payload = inline if isinstance(inline, str) else ""
        kind = ContentKind.TRASH if item.get("status") == "trashed" else partition_for(item.get("type", ""))
        ctx.content_writes.append((kind, ContentWrite(content_id, item.get("name", ""), payload)))
        item["contentId"] = content_id
        item.pop("sourceRef", None)
        item["size"] = payload_size(payload)
    return {**doc, "items": items}


def _to_iso(value: Any, fallback: str) -> str:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
    if isinstance(value, str) and value:
        return value
    return fallback


def _backfill_timestamps(doc: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    """v4: createdAt/modifiedAt on every item, legacy epoch-millis converted."""
    now = ctx.now.isoformat()
    items = _items(doc)
    for item in items:
        legacy_modified = item.pop("lastModified", None)
        created = _to_iso(item.get("createdAt"), now)
        item["createdAt"] = created
        item["modifiedAt"] = _to_iso(item.get("modifiedAt", legacy_modified), created)
        if item.get("status") == "trashed" and "deletedAt" in item:
            item["deletedAt"] = _to_iso(item["deletedAt"], now)
    return {**doc, "items": items}


def _rename_folder_icons(doc: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    """v5: well-known folders get the current icon set."""
    items = _items(doc)
    for item in items:
        icon = WELL_KNOWN_ICONS.get(item.get("path", ""))
        if icon and item.get("status", "active") == "active":
            item["icon"] = icon
    return {**doc, "items": items}


DEFAULT_STEPS: list[MigrationStep] = [
    MigrationStep(2, "backfill status and variant", _backfill_status_and_variant),
    MigrationStep(3, "assign content ids and lift inline content", _lift_inline_content),
    MigrationStep(4, "backfill timestamps", _backfill_timestamps),
    MigrationStep(5, "rename well-known folder icons", _rename_folder_icons),
]


class SchemaMigrator:
    """Applies every step newer than the document's version, in order.

    The input document is never modified; a failing step raises
    ``MigrationError`` and nothing of the partial run is returned.
    """

    def __init__(
        self,
        steps: list[MigrationStep] | None = None,
        current_version: int = CURRENT_SCHEMA_VERSION,
    ):
        self._steps = sorted(steps if steps is not None else DEFAULT_STEPS, key=lambda s: s.to_version)
        self.current_version = current_version

    def migrate(self, document: dict[str, Any], now: datetime | None = None) -> MigrationResult:
        try:
            from_version = int(document.get("version", 1))
        except (TypeError, ValueError) as e:
            raise MigrationError(f"Unreadable schema version: {document.get('version')!r}") from e

        if from_version > self.current_version:
            raise MigrationError(
                f"Snapshot version {from_version} is newer than supported {self.current_version}",
                from_version=from_version,
            )

        doc = copy.deepcopy(document)
        ctx = MigrationContext(now=now or datetime.now(timezone.utc))
        version = from_version
        for step in self._steps:
            if step.to_version <= version or step.to_version > self.current_version:
                continue
            try:
                doc = step.apply(doc, ctx)
            except Exception as e:
                logger.error("Migration step to v%d (%s) failed: %s", step.to_version, step.description, e)
                raise MigrationError(
                    f"Migration to v{step.to_version} ({step.description}) failed: {e}",
                    from_version=from_version,
                ) from e
            version = step.to_version
            doc["version"] = version
            logger.info("Applied migration v%d: %s", version, step.description)

        doc["version"] = max(version, from_version)
        return MigrationResult(
            document=doc,
            from_version=from_version,
            to_version=doc["version"],
            content_writes=ctx.content_writes,
        )
