"""Change notifications — in-process observer interface for UI synchronization."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CREATED = "created"
    RENAMED = "renamed"
    TRASHED = "trashed"
    RESTORED = "restored"
    CONTENT_UPDATED = "content-updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileSystemEvent:
    kind: EventKind
    new_path: str
    name: str
    old_path: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "oldPath": self.old_path,
            "newPath": self.new_path,
            "name": self.name,
            "timestamp": self.timestamp.isoformat(),
        }


Listener = Callable[[FileSystemEvent], None]


class EventBus:
    """Best-effort, same-process fan-out. A failing listener never blocks the others."""

    def __init__(self) -> None:
        self._listeners: list[tuple[Listener, frozenset[EventKind] | None]] = []

    def subscribe(
        self, listener: Listener, kinds: Iterable[EventKind] | None = None
    ) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        entry = (listener, frozenset(kinds) if kinds is not None else None)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(entry)
            except ValueError:
                pass

        return _unsubscribe

    def emit(self, event: FileSystemEvent) -> int:
        delivered = 0
        for listener, kinds in list(self._listeners):
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                listener(event)
                delivered += 1
            except Exception as e:
                logger.error("Event listener failed for %s %s: %s", event.kind.value, event.new_path, e)
        return delivered
