"""Health check."""

from fastapi import APIRouter, Depends

from shellfs import __version__
from shellfs.api.deps import get_fs
from shellfs.schemas.system import HealthResponse
from shellfs.services.filesystem import FileSystemService

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(fs: FileSystemService = Depends(get_fs)):
    """Liveness plus snapshot schema state."""
    return HealthResponse(
        version=__version__,
        schema_version=fs.index.version,
        persist_enabled=fs.index.persist_enabled,
        degraded=fs.index.degraded,
    )


@router.get("/ping")
async def ping():
    """Ultra-lightweight ping."""
    return {"status": "ok"}
