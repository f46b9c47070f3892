"""File system API schemas — request bodies and content payloads."""

from __future__ import annotations

import base64
import binascii
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shellfs.errors import InvalidTargetError
from shellfs.schemas.items import AliasKind
from shellfs.services.content_store import ContentRecord

Encoding = Literal["utf-8", "base64"]


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SaveRequest(_Body):
    """Content for ``PUT /fs/save``. Binary payloads are base64 encoded."""
    path: str
    content: str = ""
    encoding: Encoding = "utf-8"
    type: str | None = None
    create_only: bool = False

    def payload(self) -> str | bytes:
        if self.encoding == "base64":
            try:
                return base64.b64decode(self.content, validate=True)
            except (binascii.Error, ValueError) as e:
                raise InvalidTargetError(f"Invalid base64 content: {e}", self.path) from e
        return self.content


class PathRequest(_Body):
    path: str


class FolderRequest(_Body):
    path: str


class AliasRequest(_Body):
    path: str
    target: str
    alias_kind: AliasKind = AliasKind.FILE


class RenameRequest(_Body):
    path: str
    new_name: str = Field(min_length=1)


class MoveRequest(_Body):
    path: str
    new_parent: str


class ContentResponse(_Body):
    path: str
    name: str
    content: str
    encoding: Encoding = "utf-8"
    size: int

    @classmethod
    def from_record(cls, path: str, record: ContentRecord) -> "ContentResponse":
        if record.is_binary:
            return cls(
                path=path,
                name=record.name,
                content=base64.b64encode(record.payload).decode("ascii"),
                encoding="base64",
                size=record.size,
            )
        return cls(path=path, name=record.name, content=record.payload, size=record.size)


class ListResponse(_Body):
    path: str
    items: list[dict]


class CountResponse(BaseModel):
    count: int


class ReconcileResponse(BaseModel):
    deleted: int
