"""Tests for path helpers."""

import pytest

from shellfs.errors import InvalidTargetError
from shellfs.utils import paths


class TestNormalize:
    def test_root(self):
        assert paths.normalize("/") == "/"

    def test_collapses_slashes_and_dots(self):
        assert paths.normalize("//Documents/./notes//") == "/Documents/notes"

    def test_parent_segments(self):
        assert paths.normalize("/Documents/a/../b") == "/Documents/b"

    def test_relative_is_anchored(self):
        assert paths.normalize("Documents/a.txt") == "/Documents/a.txt"

    def test_escape_root_rejected(self):
        with pytest.raises(InvalidTargetError):
            paths.normalize("/../etc")

    def test_empty_rejected(self):
        with pytest.raises(InvalidTargetError):
            paths.normalize("")


class TestRelations:
    def test_parent(self):
        assert paths.parent("/Documents/a.txt") == "/Documents"
        assert paths.parent("/Documents") == "/"
        assert paths.parent("/") == "/"

    def test_descendant_is_segment_aware(self):
        assert paths.is_descendant("/Documents/a", "/Documents")
        assert not paths.is_descendant("/DocumentsOld/a", "/Documents")
        assert not paths.is_descendant("/Documents", "/Documents")
        assert paths.is_same_or_descendant("/Documents", "/Documents")

    def test_everything_below_root(self):
        assert paths.is_descendant("/Documents", "/")
        assert not paths.is_descendant("/", "/")

    def test_rebase(self):
        assert paths.rebase("/Documents/A/x.md", "/Documents/A", "/Documents/B") == "/Documents/B/x.md"
        assert paths.rebase("/Documents/A", "/Documents/A", "/Trash/A") == "/Trash/A"


class TestNames:
    def test_validate_name_strips(self):
        assert paths.validate_name("  note.md ") == "note.md"

    @pytest.mark.parametrize("bad", ["", "  ", ".", "..", "a/b"])
    def test_validate_name_rejects(self, bad):
        with pytest.raises(InvalidTargetError):
            paths.validate_name(bad)

    def test_split_ext(self):
        assert paths.split_ext("note.md") == ("note", ".md")
        assert paths.split_ext("README") == ("README", "")
