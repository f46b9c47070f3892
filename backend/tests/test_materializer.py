"""Tests for lazy materialization — registration, dedup of concurrent reads, races with saves."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from shellfs.errors import NotFoundError, StorageUnavailableError
from shellfs.services.content_store import ContentKind
from shellfs.services.materializer import (
    HttpContentFetcher,
    LazyMaterializer,
    ManifestEntry,
    load_manifest,
)


class GatedFetcher:
    """Blocks every fetch until ``release`` is set."""

    def __init__(self, payload="seeded"):
        self.payload = payload
        self.calls = 0
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, ref, item_type):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.payload


@pytest.fixture
def manifest():
    return [
        ManifestEntry(path="/Documents/Welcome/readme.md", ref="seed/readme.md", type="markdown"),
        ManifestEntry(path="/Images/logo.png", ref="seed/logo.png", type="image"),
    ]


@pytest.mark.asyncio
async def test_register_creates_pending_files_and_parents(fs, manifest):
    assert fs.register_manifest(manifest) == 2
    readme = fs.get("/Documents/Welcome/readme.md")
    assert readme.is_pending
    assert fs.get("/Documents/Welcome").is_directory

    # second registration leaves existing paths alone
    assert fs.register_manifest(manifest) == 0


@pytest.mark.asyncio
async def test_register_skips_virtual_paths(fs):
    assert fs.register_manifest([ManifestEntry(path="/Music/x.mp3", ref="x")]) == 0


@pytest.mark.asyncio
async def test_first_read_materializes(fs, fetcher, store, manifest):
    fs.register_manifest(manifest)
    fetcher.payloads["seed/readme.md"] = "# Welcome"

    record = await fs.read("/Documents/Welcome/readme.md")
    assert record.payload == "# Welcome"

    item = fs.get("/Documents/Welcome/readme.md")
    assert not item.is_pending
    assert item.size == len("# Welcome")
    stored = await store.get(item.content_id, ContentKind.DOCUMENTS)
    assert stored.payload == "# Welcome"

    await fs.read("/Documents/Welcome/readme.md")
    assert fetcher.calls == ["seed/readme.md"]


@pytest.mark.asyncio
async def test_concurrent_reads_fetch_once(index, store):
    fetcher = GatedFetcher()
    lazy = LazyMaterializer(index, store, fetcher)
    lazy.register([ManifestEntry(path="/Documents/big.txt", ref="big")])

    readers = [asyncio.create_task(lazy.materialize("/Documents/big.txt")) for _ in range(5)]
    await fetcher.started.wait()
    assert lazy.is_in_flight("/Documents/big.txt")
    fetcher.release.set()

    results = await asyncio.gather(*readers)
    assert fetcher.calls == 1
    assert {r.payload for r in results} == {"seeded"}
    assert not lazy.is_in_flight("/Documents/big.txt")


@pytest.mark.asyncio
async def test_abandoned_waiter_does_not_cancel_fetch(index, store):
    fetcher = GatedFetcher()
    lazy = LazyMaterializer(index, store, fetcher)
    lazy.register([ManifestEntry(path="/Documents/big.txt", ref="big")])

    waiter = asyncio.create_task(lazy.materialize("/Documents/big.txt"))
    await fetcher.started.wait()
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    fetcher.release.set()
    record = await lazy.materialize("/Documents/big.txt")
    assert record.payload == "seeded"
    assert fetcher.calls == 1
    assert not lazy.is_pending("/Documents/big.txt")


@pytest.mark.asyncio
async def test_save_during_fetch_wins(fs, store):
    fetcher = GatedFetcher(payload="stale seed")
    lazy = LazyMaterializer(fs.index, store, fetcher)
    lazy.register([ManifestEntry(path="/Documents/draft.md", ref="draft", type="markdown")])

    reader = asyncio.create_task(lazy.materialize("/Documents/draft.md"))
    await fetcher.started.wait()
    await fs.save("/Documents/draft.md", "user edit")
    fetcher.release.set()

    record = await reader
    assert record.payload == "user edit"
    assert (await fs.read("/Documents/draft.md")).payload == "user edit"


@pytest.mark.asyncio
async def test_fetch_failure_keeps_item_pending(index, store):
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(side_effect=StorageUnavailableError("network down"))
    lazy = LazyMaterializer(index, store, fetcher)
    lazy.register([ManifestEntry(path="/Documents/a.md", ref="a")])

    with pytest.raises(StorageUnavailableError):
        await lazy.materialize("/Documents/a.md")
    assert lazy.is_pending("/Documents/a.md")
    assert not lazy.is_in_flight("/Documents/a.md")


def test_load_manifest(tmp_path):
    path = tmp_path / "seed.json"
    path.write_text(json.dumps([
        {"path": "/Documents/a.md", "ref": "a.md", "type": "markdown"},
        {"path": "/Images/b.png", "ref": "b.png", "type": "image", "icon": "/i.png"},
        {"path": "/no-ref"},
    ]))
    entries = load_manifest(path)
    assert [e.path for e in entries] == ["/Documents/a.md", "/Images/b.png"]
    assert entries[1].icon == "/i.png"
    assert load_manifest(tmp_path / "missing.json") == []


class TestHttpContentFetcher:
    def test_resolve_relative(self):
        fetcher = HttpContentFetcher(base_url="http://seed.local/files/", timeout=1)
        assert fetcher.resolve("/docs/a.md") == "http://seed.local/files/docs/a.md"
        assert fetcher.resolve("https://cdn/x.png") == "https://cdn/x.png"

    @staticmethod
    def _client_returning(response):
        client = MagicMock()
        client.get = AsyncMock(return_value=response)
        ctx = MagicMock()
        ctx.__aenter__ = AsyncMock(return_value=client)
        ctx.__aexit__ = AsyncMock(return_value=False)
        return ctx

    @pytest.mark.asyncio
    async def test_binary_types_return_bytes(self):
        request = httpx.Request("GET", "http://seed.local/logo.png")
        response = httpx.Response(200, content=b"\x89PNG", request=request)
        with patch("shellfs.services.materializer.httpx.AsyncClient", return_value=self._client_returning(response)):
            payload = await HttpContentFetcher(base_url="http://seed.local", timeout=1).fetch("logo.png", "image")
        assert payload == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_text_types_return_str(self):
        request = httpx.Request("GET", "http://seed.local/a.md")
        response = httpx.Response(200, text="# A", request=request)
        with patch("shellfs.services.materializer.httpx.AsyncClient", return_value=self._client_returning(response)):
            payload = await HttpContentFetcher(base_url="http://seed.local", timeout=1).fetch("a.md", "markdown")
        assert payload == "# A"

    @pytest.mark.asyncio
    async def test_missing_seed_is_not_found(self):
        request = httpx.Request("GET", "http://seed.local/gone.md")
        response = httpx.Response(404, request=request)
        with patch("shellfs.services.materializer.httpx.AsyncClient", return_value=self._client_returning(response)):
            with pytest.raises(NotFoundError):
                await HttpContentFetcher(base_url="http://seed.local", timeout=1).fetch("gone.md", "text")

    @pytest.mark.asyncio
    async def test_server_error_is_storage_unavailable(self):
        request = httpx.Request("GET", "http://seed.local/a.md")
        response = httpx.Response(503, request=request)
        with patch("shellfs.services.materializer.httpx.AsyncClient", return_value=self._client_returning(response)):
            with pytest.raises(StorageUnavailableError):
                await HttpContentFetcher(base_url="http://seed.local", timeout=1).fetch("a.md", "text")
