"""Directory events: target identity, event model, and the watchdog adapter.

watchdog reports events for the parent directory of the followed file. The
adapter reduces them to (kind, file name) pairs on a bounded queue; when the
queue saturates, pending events are discarded and a single OVERFLOW is queued
in their place.
"""

import logging
import os
import queue
import threading
from dataclasses import dataclass
from enum import Enum

from watchdog.events import FileSystemEventHandler

logger = logging.getLogger(__name__)


class EventKind(Enum):
    CREATE = "create"
    DELETE = "delete"
    MODIFY = "modify"
    OVERFLOW = "overflow"        # events may have been lost
    INVALIDATED = "invalidated"  # watched directory is gone


@dataclass(frozen=True)
class WatchEvent:
    kind: EventKind
    name: str | None = None      # file name within the watched directory; None = whole directory


class TargetFile:
    """Absolute, normalized path of the followed file and its parent directory."""

    def __init__(self, path: str):
        self.path = os.path.normpath(os.path.abspath(path))
        self.parent_dir = os.path.dirname(self.path)
        self.name = os.path.basename(self.path)

    def is_target_event(self, name: str | None) -> bool:
        """True if an event with this file name concerns the target.

        An event without a name applies to the whole directory, so it is relevant.
        """
        if name is None:
            return True
        return os.path.normpath(os.path.join(self.parent_dir, name)) == self.path

    def __repr__(self):
        return f"TargetFile({self.path!r})"


class DirectoryEventHandler(FileSystemEventHandler):
    """watchdog handler that queues WatchEvents for one (non-recursive) directory."""

    def __init__(self, directory: str, maxsize: int = 1024):
        super().__init__()
        if maxsize < 2:
            raise ValueError(f"maxsize must be at least 2, got {maxsize}")
        self._directory = os.path.normpath(os.path.abspath(directory))
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()

    @property
    def directory(self) -> str:
        return self._directory

    def get(self, timeout: float | None = None) -> WatchEvent | None:
        """Block until the next event. Returns None when woken by ``wake()``.

        Raises:
            queue.Empty: If ``timeout`` elapses first.
        """
        return self._queue.get(timeout=timeout)

    def wake(self):
        """Unblock a pending ``get()``."""
        with self._lock:
            try:
                self._queue.put_nowait(None)
            except queue.Full:
                # A full queue means the consumer is not blocked
                pass

    def put(self, event: WatchEvent):
        with self._lock:
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                dropped = self._discard_pending()
                logger.warning("Event queue overflow in %s, dropped %d pending event(s)",
                               self._directory, len(dropped))
                self._queue.put_nowait(WatchEvent(EventKind.OVERFLOW))
                if any(e is None for e in dropped):
                    self._queue.put_nowait(None)

    def _discard_pending(self) -> list:
        dropped = []
        while True:
            try:
                dropped.append(self._queue.get_nowait())
            except queue.Empty:
                return dropped

    def _normalize(self, path) -> str:
        return os.path.normpath(os.path.abspath(os.fsdecode(path)))

    def _is_self(self, path) -> bool:
        return self._normalize(path) == self._directory

    def _child_name(self, path) -> str | None:
        """File name of ``path`` if it lives directly in the watched directory."""
        path = self._normalize(path)
        if os.path.dirname(path) == self._directory:
            return os.path.basename(path)
        return None

    def on_created(self, event):
        if event.is_directory:
            return
        name = self._child_name(event.src_path)
        if name is not None:
            self.put(WatchEvent(EventKind.CREATE, name))

    def on_deleted(self, event):
        if self._is_self(event.src_path):
            logger.info("Watched directory deleted: %s", self._directory)
            self.put(WatchEvent(EventKind.INVALIDATED))
            return
        if event.is_directory:
            return
        name = self._child_name(event.src_path)
        if name is not None:
            self.put(WatchEvent(EventKind.DELETE, name))

    def on_modified(self, event):
        if event.is_directory:
            if self._is_self(event.src_path):
                self.put(WatchEvent(EventKind.MODIFY))
            return
        name = self._child_name(event.src_path)
        if name is not None:
            self.put(WatchEvent(EventKind.MODIFY, name))

    def on_moved(self, event):
        if self._is_self(event.src_path):
            logger.info("Watched directory moved: %s", self._directory)
            self.put(WatchEvent(EventKind.INVALIDATED))
            return
        if event.is_directory:
            return
        # A rename is a delete of the old name and a create of the new one
        src_name = self._child_name(event.src_path)
        if src_name is not None:
            self.put(WatchEvent(EventKind.DELETE, src_name))
        dest_name = self._child_name(event.dest_path)
        if dest_name is not None:
            self.put(WatchEvent(EventKind.CREATE, dest_name))
