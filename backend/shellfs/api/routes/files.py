"""File system routes — list, read, save and lifecycle operations."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from shellfs.api.deps import get_fs
from shellfs.schemas.files import (
    AliasRequest,
    ContentResponse,
    CountResponse,
    FolderRequest,
    ListResponse,
    MoveRequest,
    PathRequest,
    ReconcileResponse,
    RenameRequest,
    SaveRequest,
)
from shellfs.schemas.items import dump_item
from shellfs.services.filesystem import FileSystemService
from shellfs.services.metadata_index import SortKey

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/list", response_model=ListResponse)
async def list_directory(
    path: str = "/",
    sort: SortKey = SortKey.NAME,
    descending: bool = False,
    fs: FileSystemService = Depends(get_fs),
):
    """Direct children of a folder, physical and virtual."""
    items = fs.list(path, sort=sort, descending=descending)
    return ListResponse(path=path, items=[dump_item(i) for i in items])


@router.get("/item")
async def get_item(path: str = Query(...), fs: FileSystemService = Depends(get_fs)):
    return dump_item(fs.get(path))


@router.get("/read", response_model=ContentResponse)
async def read_file(path: str = Query(...), fs: FileSystemService = Depends(get_fs)):
    """File content; materializes lazily seeded files on first read."""
    record = await fs.read(path)
    return ContentResponse.from_record(path, record)


@router.put("/save")
async def save_file(body: SaveRequest, fs: FileSystemService = Depends(get_fs)):
    item = await fs.save(body.path, body.payload(), type=body.type, create_only=body.create_only)
    return dump_item(item)


@router.post("/folder", status_code=201)
async def create_folder(body: FolderRequest, fs: FileSystemService = Depends(get_fs)):
    return dump_item(fs.create_folder(body.path))


@router.post("/alias", status_code=201)
async def create_alias(body: AliasRequest, fs: FileSystemService = Depends(get_fs)):
    return dump_item(fs.create_alias(body.path, body.target, body.alias_kind))


@router.post("/rename")
async def rename_item(body: RenameRequest, fs: FileSystemService = Depends(get_fs)):
    return dump_item(fs.rename(body.path, body.new_name))


@router.post("/move")
async def move_item(body: MoveRequest, fs: FileSystemService = Depends(get_fs)):
    return dump_item(fs.move(body.path, body.new_parent))


@router.post("/trash")
async def trash_item(body: PathRequest, fs: FileSystemService = Depends(get_fs)):
    return dump_item(await fs.trash(body.path))


@router.post("/restore")
async def restore_item(body: PathRequest, fs: FileSystemService = Depends(get_fs)):
    return dump_item(await fs.restore(body.path))


@router.post("/purge", response_model=CountResponse)
async def purge_item(body: PathRequest, fs: FileSystemService = Depends(get_fs)):
    """Permanently delete one trashed item."""
    return CountResponse(count=await fs.purge(body.path))


@router.post("/empty-trash", response_model=CountResponse)
async def empty_trash(fs: FileSystemService = Depends(get_fs)):
    return await fs.empty_trash()


@router.post("/format")
async def format_filesystem(fs: FileSystemService = Depends(get_fs)):
    """Wipe both storage layers and reseed the default folders."""
    await fs.format()
    logger.warning("File system formatted via API")
    return {"status": "ok"}


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_content(fs: FileSystemService = Depends(get_fs)):
    return await fs.reconcile()
