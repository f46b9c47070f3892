"""Metadata index records — a tagged union over file, folder, alias and virtual entries."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class ItemStatus(str, Enum):
    ACTIVE = "active"
    TRASHED = "trashed"


class AliasKind(str, Enum):
    FILE = "file"
    APPLICATION = "application"


class _ItemBase(BaseModel):
    """Fields shared by every variant. Snapshot keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    path: str
    name: str
    type: str
    icon: str | None = None
    created_at: datetime | None = None
    modified_at: datetime | None = None
    status: ItemStatus = ItemStatus.ACTIVE
    original_path: str | None = None
    deleted_at: datetime | None = None

    @property
    def is_directory(self) -> bool:
        return False

    @property
    def is_trashed(self) -> bool:
        return self.status == ItemStatus.TRASHED

    @property
    def is_virtual(self) -> bool:
        return False


class FileItem(_ItemBase):
    """Physical file. ``content_id`` is set once content is materialized."""

    variant: Literal["file"] = "file"
    type: str = "text"
    content_id: str | None = None
    size: int | None = None
    source_ref: str | None = None  # external ref for lazily seeded content

    @property
    def is_pending(self) -> bool:
        return self.content_id is None and self.source_ref is not None


class FolderItem(_ItemBase):
    variant: Literal["folder"] = "folder"
    type: str = "folder"

    @property
    def is_directory(self) -> bool:
        return True


class AliasItem(_ItemBase):
    """Desktop shortcut pointing at a file path or an application id."""

    variant: Literal["alias"] = "alias"
    type: str = "alias"
    alias_target: str
    alias_kind: AliasKind = AliasKind.FILE


class VirtualItem(_ItemBase):
    """Entry synthesized from a catalog. Never persisted, never owns content."""

    variant: Literal["virtual"] = "virtual"
    mount: str
    external_id: str | None = None
    directory: bool = False

    @property
    def is_directory(self) -> bool:
        return self.directory

    @property
    def is_virtual(self) -> bool:
        return True


FileSystemItem = Annotated[
    Union[FileItem, FolderItem, AliasItem, VirtualItem],
    Field(discriminator="variant"),
]

PersistedItem = Annotated[
    Union[FileItem, FolderItem, AliasItem],
    Field(discriminator="variant"),
]

persisted_item_adapter: TypeAdapter = TypeAdapter(PersistedItem)


def dump_item(item: _ItemBase) -> dict:
    """Serialize an item for the snapshot document."""
    return item.model_dump(mode="json", by_alias=True, exclude_none=True)
