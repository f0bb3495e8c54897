"""Recursive watch of the provisioning directory, bridged onto asyncio.

watchdog delivers events on its observer thread; :class:`ProvisioningWatcher`
hands every file event to the event loop with ``call_soon_threadsafe`` so the
rest of the reloader only ever runs on the loop thread.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

LOGGER = logging.getLogger(__name__)


class WatcherError(RuntimeError):
    """Raised when the provisioning directory cannot be watched."""


class EventKind(str, Enum):
    """Kinds of file change the reloader reacts to."""

    EXISTING = "existing"
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


_WATCHDOG_KINDS = {
    "created": EventKind.CREATED,
    "modified": EventKind.MODIFIED,
    "deleted": EventKind.DELETED,
    "moved": EventKind.MOVED,
}


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A single ``(kind, path)`` notification about a provisioning file."""

    kind: EventKind
    path: str


ChangeCallback = Callable[[ChangeEvent], None]


class _ForwardingHandler(FileSystemEventHandler):
    def __init__(self, loop: asyncio.AbstractEventLoop, callback: ChangeCallback) -> None:
        self._loop = loop
        self._callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        kind = _WATCHDOG_KINDS.get(event.event_type)
        if kind is None:
            return
        if kind is EventKind.MOVED:
            # The source left its directory; both ends may need a reload.
            self._forward(EventKind.DELETED, event.src_path)
            if event.dest_path:
                self._forward(EventKind.MOVED, event.dest_path)
            return
        self._forward(kind, event.src_path)

    def _forward(self, kind: EventKind, path: str | bytes) -> None:
        if isinstance(path, bytes):
            path = path.decode()
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._callback, ChangeEvent(kind, str(path)))


class ProvisioningWatcher:
    """Own a watchdog observer for *root* and forward events to *callback*."""

    def __init__(
        self,
        root: Path,
        callback: ChangeCallback,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.root = root
        self._callback = callback
        self._loop = loop
        self._observer: Observer | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def scan(self) -> Iterator[ChangeEvent]:
        """Yield the files already present under the root."""
        if not self.root.is_dir():
            return
        for path in sorted(self.root.rglob("*")):
            if path.is_file():
                yield ChangeEvent(EventKind.EXISTING, str(path))

    def start(self) -> None:
        """Start watching, creating the root if needed; call from within the event loop."""
        if self._observer is not None:
            return
        loop = self._loop or asyncio.get_running_loop()
        observer = Observer()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            observer.schedule(
                _ForwardingHandler(loop, self._callback), str(self.root), recursive=True
            )
            observer.start()
        except OSError as exc:
            raise WatcherError(f"Cannot watch provisioning directory {self.root}: {exc}") from exc
        self._observer = observer
        LOGGER.info('Start watching provisioning directory "%s"', self.root)

    def stop(self) -> None:
        """Stop the observer thread and wait for it to exit."""
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None


__all__ = [
    "ChangeCallback",
    "ChangeEvent",
    "EventKind",
    "ProvisioningWatcher",
    "WatcherError",
]
