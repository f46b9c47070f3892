"""Tests for change notifications."""

from unittest.mock import MagicMock

from shellfs.services.events import EventBus, EventKind, FileSystemEvent


def _event(kind=EventKind.CREATED):
    return FileSystemEvent(kind=kind, new_path="/Documents/a.md", name="a.md")


def test_delivers_to_all_listeners():
    bus = EventBus()
    first, second = MagicMock(), MagicMock()
    bus.subscribe(first)
    bus.subscribe(second)

    assert bus.emit(_event()) == 2
    first.assert_called_once()
    second.assert_called_once()


def test_unsubscribe():
    bus = EventBus()
    listener = MagicMock()
    unsubscribe = bus.subscribe(listener)
    unsubscribe()
    unsubscribe()  # second call is harmless

    assert bus.emit(_event()) == 0
    listener.assert_not_called()


def test_kind_filter():
    bus = EventBus()
    listener = MagicMock()
    bus.subscribe(listener, kinds=[EventKind.TRASHED])

    bus.emit(_event(EventKind.CREATED))
    bus.emit(_event(EventKind.TRASHED))
    assert listener.call_count == 1


def test_failing_listener_does_not_block_others():
    bus = EventBus()
    broken = MagicMock(side_effect=RuntimeError("ui gone"))
    healthy = MagicMock()
    bus.subscribe(broken)
    bus.subscribe(healthy)

    assert bus.emit(_event()) == 1
    healthy.assert_called_once()


def test_to_dict_uses_camel_case():
    event = FileSystemEvent(
        kind=EventKind.RENAMED, new_path="/Documents/b.md", name="b.md", old_path="/Documents/a.md"
    )
    data = event.to_dict()
    assert data["kind"] == "renamed"
    assert data["oldPath"] == "/Documents/a.md"
    assert data["newPath"] == "/Documents/b.md"
