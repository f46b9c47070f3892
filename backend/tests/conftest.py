"""Test fixtures — temp SQLite content store, file system service and FastAPI test client."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shellfs.api.deps import get_fs
from shellfs.database import create_engine_for, init_db
from shellfs.main import create_app
from shellfs.services.content_store import ContentStore
from shellfs.services.events import EventBus
from shellfs.services.filesystem import FileSystemService
from shellfs.services.materializer import LazyMaterializer
from shellfs.services.metadata_index import MetadataIndex
from shellfs.services.namespace import CatalogEntry, StaticCatalog, VirtualNamespace, builtin_applications


class FakeFetcher:
    """Records fetches and serves canned payloads."""

    def __init__(self, payloads: dict | None = None):
        self.payloads = payloads or {}
        self.calls: list[str] = []

    async def fetch(self, ref: str, item_type: str):
        self.calls.append(ref)
        return self.payloads.get(ref, f"content of {ref}")


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Async session factory over a fresh on-disk SQLite file."""
    engine = create_engine_for(tmp_path / "content.db")
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return ContentStore(session_factory, retry_backoff=0)


@pytest.fixture
def music_catalog():
    return StaticCatalog([
        CatalogEntry(id="track-1", name="Song One", type="audio"),
        CatalogEntry(id="track-2", name="Song Two", type="audio", folder="Albums/Best"),
    ])


@pytest.fixture
def namespace(music_catalog):
    return VirtualNamespace({
        "/Applications": builtin_applications(),
        "/Music": music_catalog,
    })


@pytest.fixture
def snapshot_path(tmp_path):
    return tmp_path / "metadata.json"


@pytest.fixture
def index(snapshot_path, namespace):
    return MetadataIndex(snapshot_path, namespace=namespace, debounce_seconds=0)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def events():
    return EventBus()


@pytest_asyncio.fixture
async def fs(index, store, namespace, fetcher, events):
    """Bootstrapped file system with the default folders."""
    service = FileSystemService(
        index, store, namespace,
        materializer=LazyMaterializer(index, store, fetcher),
        events=events,
    )
    await service.bootstrap()
    yield service
    await index.close()


@pytest_asyncio.fixture
async def client(fs: FileSystemService):
    """Provide an async test client with the file system dependency overridden."""
    app = create_app()
    app.dependency_overrides[get_fs] = lambda: fs

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
