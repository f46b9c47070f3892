"""Tests for the virtual namespace — mount projection, nesting and read-only enforcement."""

import json

import pytest

from shellfs.errors import ReadOnlyError
from shellfs.services.namespace import (
    CatalogEntry,
    JsonFileCatalog,
    StaticCatalog,
    VirtualNamespace,
)


def test_root_lists_mount_folders(namespace: VirtualNamespace):
    names = {item.path for item in namespace.list("/")}
    assert names == {"/Applications", "/Music"}
    assert all(item.is_directory for item in namespace.list("/"))


def test_applications_projected(namespace: VirtualNamespace):
    apps = {item.external_id: item for item in namespace.list("/Applications")}
    assert "textedit" in apps
    assert "finder" not in apps
    assert apps["textedit"].name == "TextEdit"
    assert apps["textedit"].path == "/Applications/textedit"
    assert apps["textedit"].is_virtual


def test_nested_catalog_folders(namespace: VirtualNamespace):
    top = {item.name: item for item in namespace.list("/Music")}
    assert set(top) == {"Song One", "Albums"}
    assert top["Albums"].is_directory

    best = namespace.list("/Music/Albums/Best")
    assert [item.external_id for item in best] == ["track-2"]


def test_get_resolves_entries(namespace: VirtualNamespace):
    assert namespace.get("/Music").is_directory
    assert namespace.get("/Music/track-1").name == "Song One"
    assert namespace.get("/Music/nothing") is None
    assert namespace.get("/Documents") is None


def test_catalog_changes_visible_on_next_list(namespace: VirtualNamespace, music_catalog: StaticCatalog):
    music_catalog.add(CatalogEntry(id="track-3", name="Song Three", type="audio"))
    assert namespace.get("/Music/track-3") is not None
    music_catalog.remove("track-3")
    assert namespace.get("/Music/track-3") is None


def test_mutations_inside_mount_rejected(namespace: VirtualNamespace):
    with pytest.raises(ReadOnlyError):
        namespace.ensure_writable("/Music/new.mp3")
    with pytest.raises(ReadOnlyError):
        namespace.ensure_writable("/Applications")
    namespace.ensure_writable("/Documents/new.md")
    namespace.ensure_writable("/MusicNotes")


def test_failing_catalog_is_skipped():
    class Broken:
        def entries(self):
            raise RuntimeError("library offline")

    ns = VirtualNamespace({"/Music": Broken(), "/Sites": StaticCatalog([CatalogEntry("s1", "Site", "site")])})
    assert ns.list("/Music") == []
    assert [i.name for i in ns.list("/Sites")] == ["Site"]


class TestJsonFileCatalog:
    def test_reads_entries(self, tmp_path):
        path = tmp_path / "videos.json"
        path.write_text(json.dumps([
            {"id": "v1", "title": "Clip"},
            {"id": "v2", "name": "Trailer", "type": "movie", "folder": "/Films/"},
            {"name": "no id"},
        ]))
        entries = JsonFileCatalog(path, "video").entries()
        assert [(e.id, e.name, e.type, e.folder) for e in entries] == [
            ("v1", "Clip", "video", ""),
            ("v2", "Trailer", "movie", "Films"),
        ]

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFileCatalog(tmp_path / "missing.json", "video").entries() == []

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert JsonFileCatalog(path, "video").entries() == []
