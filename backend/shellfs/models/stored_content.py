"""Stored content model — one payload per (partition, content id)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer, LargeBinary, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from shellfs.models.base import Base


class StoredContent(Base):
    __tablename__ = "stored_content"

    partition: Mapped[str] = mapped_column(String(20), primary_key=True)
    content_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    is_binary: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    text_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    blob_payload: Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    size_bytes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<StoredContent(partition={self.partition}, id={self.content_id}, name='{self.name}')>"
