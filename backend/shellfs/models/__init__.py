"""SQLAlchemy ORM models for the content store."""

from shellfs.models.base import Base
from shellfs.models.stored_content import StoredContent

__all__ = [
    "Base",
    "StoredContent",
]
