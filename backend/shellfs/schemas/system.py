"""Service status schemas."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    version: str
    service: str = "shellfs"
    schema_version: int | None = None
    persist_enabled: bool = True
    degraded: bool = False
