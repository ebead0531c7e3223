"""TailSession: one generation of the followed file, read through one open handle.

The session is a plain state object. ``run()`` is the read loop and is meant to
be executed on a worker thread owned by the caller; every other method only
posts to the session's events, so they are safe to call from any thread.
"""

import logging
import os
import threading
from enum import Enum

from tailf.decoder import StreamDecoder
from tailf.events import TargetFile
from tailf.exceptions import TargetMissingError
from tailf.position import PositionStore

logger = logging.getLogger(__name__)


class SessionState(Enum):
    CREATED = "created"
    RUNNING = "running"
    SUSPENDED = "suspended"   # waiting for a modify signal
    STOPPED = "stopped"       # terminal


class TailSession:
    def __init__(self, target: TargetFile, sink, decoder: StreamDecoder, store: PositionStore):
        if not os.path.exists(target.path):
            raise TargetMissingError(target.path)
        self._target = target
        self._sink = sink
        self._decoder = decoder
        self._store = store
        self._source = None
        self._state = SessionState.CREATED
        self._shutdown = threading.Event()
        # Coalescing permit: many modify signals before a wake-up yield one pass.
        # Starts set so the first pass catches up with existing content.
        self._signal = threading.Event()
        self._signal.set()
        self._timer: threading.Timer | None = None
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None

    @classmethod
    def from_config(cls, config, sink, target: TargetFile | None = None) -> "TailSession":
        target = target or TargetFile(config.target)
        decoder = StreamDecoder(config.source_charset, config.dest_charset, config.buffer_size)
        return cls(target, sink, decoder, PositionStore.from_config(config))

    @property
    def target(self) -> TargetFile:
        return self._target

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def store(self) -> PositionStore:
        return self._store

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown.is_set()

    @property
    def error(self) -> BaseException | None:
        """The exception that ended a worker started by ``start()``, if any."""
        return self._error

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, on_failure=None):
        """Open in the caller's thread, then run the read loop on a daemon worker.

        ``on_failure(exc)`` is called from the worker if the loop dies.
        """
        self.open()
        self._thread = threading.Thread(
            target=self._run_worker, args=(on_failure,), name="tailf-session", daemon=True
        )
        self._thread.start()

    def _run_worker(self, on_failure):
        try:
            self.run()
        except BaseException as e:
            logger.error("Session for %s failed: %s", self._target.path, e)
            self._error = e
            if on_failure is not None:
                on_failure(e)

    def join(self, timeout: float | None = None):
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)

    def open(self):
        """Open the source, lock the position record and seek to the stored offset.

        Raises:
            TargetMissingError: If the file vanished since construction.
            PositionLockError: If another reader holds the position record.
        """
        if self._source is not None:
            return
        try:
            source = open(self._target.path, "rb", buffering=0)
        except FileNotFoundError:
            raise TargetMissingError(self._target.path) from None
        try:
            self._store.open()
            source.seek(self._store.read(source))
        except BaseException:
            source.close()
            self._store.close()
            raise
        self._source = source
        logger.info("Opened %s at offset %d", self._target.path, source.tell())

    def run(self):
        """Read loop: wait for a signal, check for truncation, drain. Returns after shutdown."""
        try:
            self.open()
            self._state = SessionState.RUNNING
            while not self._shutdown.is_set():
                if not self._signal.is_set():
                    self._state = SessionState.SUSPENDED
                self._signal.wait()
                self._signal.clear()
                self._state = SessionState.RUNNING
                self._reset_if_truncated()
                self._tail()
        finally:
            self._store.close()
            if self._source is not None:
                self._source.close()
            self._decoder.reset()
            self._state = SessionState.STOPPED
            logger.info("Session for %s stopped", self._target.path)

    def _reset_if_truncated(self):
        try:
            size = os.fstat(self._source.fileno()).st_size
            if size < self._store.read(self._source):
                logger.info("%s truncated, resuming at offset %d", self._target.path, size)
                self._source.seek(size)
                self._store.write(size)
        except OSError as e:
            logger.warning("Truncation check failed for %s: %s", self._target.path, e)

    def _tail(self):
        start = self._source.tell()
        try:
            consumed = self._decoder.pump(self._source, self._sink)
        except OSError as e:
            logger.warning("Pass over %s failed at offset %d, retrying on next signal: %s",
                           self._target.path, start, e)
            self._source.seek(start)
            return
        if consumed:
            logger.debug("Read %d bytes from %s", consumed, self._target.path)
        self._store.write(self._source.tell())

    def notify_modified(self, name: str | None):
        """Post a pass if the modified name is the target (or unnamed)."""
        if self._target.is_target_event(name):
            self._signal.set()

    def handle_delete(self):
        """Release the position record for a successor; keep draining the open handle."""
        self._store.close()

    def shutdown(self):
        if self._timer is not None:
            self._timer.cancel()
        self._shutdown.set()
        self._signal.set()

    def shutdown_later(self, delay: float):
        """Schedule ``shutdown()`` after ``delay`` seconds unless already shut down."""
        if self._shutdown.is_set() or self._timer is not None:
            return
        timer = threading.Timer(delay, self.shutdown)
        timer.daemon = True
        self._timer = timer
        timer.start()
