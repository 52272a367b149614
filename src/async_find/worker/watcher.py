import asyncio
import os
from collections.abc import Callable
from pathlib import Path

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)

if os.environ.get("ASYNC_FIND_POLLING", "").lower() in ("1", "true"):
    from watchdog.observers.polling import PollingObserver as Observer
else:
    from watchdog.observers import Observer

from async_find.logger import logging

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 0.5  # seconds of quiet before the source is re-run


class DirectoryWatcher:
    """
    Watches the search directory and calls ``on_change`` on the event loop once
    changes have settled.
    """

    directory: Path
    on_change: Callable[[], None]
    settle_delay: float

    def __init__(
        self,
        directory: Path,
        on_change: Callable[[], None],
        loop: asyncio.AbstractEventLoop,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        self.directory = Path(directory)
        self.on_change = on_change
        self.settle_delay = settle_delay
        self._loop = loop
        self._pending: asyncio.TimerHandle | None = None
        self.observer = Observer()

    def start(self) -> None:
        event_handler = _FSEventHandler(self)
        self.observer.schedule(
            event_handler,
            str(self.directory),
            recursive=True,
            event_filter=[
                FileCreatedEvent,
                FileModifiedEvent,
                FileDeletedEvent,
                FileMovedEvent,
            ],
        )
        logger.info("Starting directory watcher for %s", self.directory)
        self.observer.start()

    def stop(self) -> None:
        logger.info("Stopping directory watcher for %s", self.directory)
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self.observer.stop()
        self.observer.join()

    def notify(self, path: Path) -> None:
        """Called from the observer thread."""
        if ".git" in path.parts:
            return
        logger.debug("Change under watched directory: %s", path)
        self._loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
        self._pending = self._loop.call_later(self.settle_delay, self._fire)

    def _fire(self) -> None:
        self._pending = None
        self.on_change()


class _FSEventHandler(FileSystemEventHandler):
    """
    Internal event handler class to forward file events to the watcher.
    """

    watcher: DirectoryWatcher

    def __init__(self, watcher: DirectoryWatcher):
        self.watcher = watcher
        super().__init__()

    def on_created(self, event):
        if not event.is_directory:
            self.watcher.notify(Path(os.fsdecode(event.src_path)))

    def on_deleted(self, event):
        if not event.is_directory:
            self.watcher.notify(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event):
        if not event.is_directory:
            self.watcher.notify(Path(os.fsdecode(event.src_path)))
            dest_path = getattr(event, "dest_path", None)
            if dest_path:
                self.watcher.notify(Path(os.fsdecode(dest_path)))

    def on_modified(self, event):
        if not event.is_directory:
            self.watcher.notify(Path(os.fsdecode(event.src_path)))
