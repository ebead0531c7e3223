"""RotationController: watches the target's directory and drives session lifecycles.

Event handling:
  MODIFY   -> signal the active session
  DELETE   -> release the active session's position record, stop it after a grace period
  CREATE   -> retire the active session the same way, start a fresh session from offset 0
  OVERFLOW -> stop and join the active session, start a fresh session from offset 0
"""

import logging
import sys
import threading
from dataclasses import replace

from watchdog.observers import Observer

from tailf.config import Config
from tailf.events import DirectoryEventHandler, EventKind, TargetFile, WatchEvent
from tailf.exceptions import SessionFailedError, TargetMissingError
from tailf.session import TailSession

logger = logging.getLogger(__name__)

JOIN_TIMEOUT = 5.0


class RotationController:
    def __init__(self, config: Config, sink=None, observer_factory=Observer):
        self._config = config
        self._sink = sink if sink is not None else sys.stdout.buffer
        self._target = TargetFile(config.target)
        self._handler = DirectoryEventHandler(self._target.parent_dir, config.event_queue_size)
        self._observer_factory = observer_factory
        self._observer = None
        self._shutdown = threading.Event()
        self._active: TailSession | None = None
        self._sessions: list[TailSession] = []
        self._error: BaseException | None = None

    @property
    def target(self) -> TargetFile:
        return self._target

    @property
    def handler(self) -> DirectoryEventHandler:
        return self._handler

    @property
    def active_session(self) -> TailSession | None:
        return self._active

    @property
    def error(self) -> BaseException | None:
        return self._error

    def start(self):
        """Start the directory watch and the first session (non-blocking).

        Raises:
            TargetMissingError, PositionLockError: Fatal startup errors.
        """
        observer = self._observer_factory()
        observer.schedule(self._handler, self._target.parent_dir, recursive=False)
        observer.start()
        self._observer = observer
        logger.info("Watching directory: %s", self._target.parent_dir)
        try:
            self._launch(self._new_session(reset=False))
        except BaseException:
            self.stop()
            raise

    def run(self):
        """Start, then dispatch directory events until shutdown.

        Raises:
            SessionFailedError: If a session's read loop crashed.
        """
        self.start()
        try:
            while not self._shutdown.is_set():
                event = self._handler.get()
                if event is None:
                    continue
                if event.kind is EventKind.INVALIDATED:
                    logger.info("Directory %s is no longer accessible, stopping", self._target.parent_dir)
                    break
                self.handle_event(event)
        finally:
            self.stop()
        if self._error is not None:
            raise SessionFailedError(f"session for {self._target.path} failed: {self._error}") from self._error

    def shutdown(self):
        """Request the watch loop to exit. Idempotent, callable from any thread."""
        self._shutdown.set()
        self._handler.wake()

    def handle_event(self, event: WatchEvent):
        if event.kind is EventKind.OVERFLOW:
            self._restart()
            return
        if not self._target.is_target_event(event.name):
            return
        session = self.active_session
        if event.kind is EventKind.MODIFY:
            if session is not None:
                session.notify_modified(event.name)
        elif event.kind is EventKind.DELETE:
            logger.info("%s deleted, draining for %.1fs", self._target.path, self._config.rotate_wait)
            self._retire(session)
        elif event.kind is EventKind.CREATE:
            self._rotate(session)

    def _rotate(self, session: TailSession | None):
        successor = self._successor()
        if successor is None:
            return
        logger.info("%s created, following the new file", self._target.path)
        # The old generation must release the position record before the new one locks it
        self._retire(session)
        self._launch_fresh(successor)

    def _retire(self, session: TailSession | None):
        if session is None:
            return
        session.handle_delete()
        session.shutdown_later(self._config.rotate_wait)

    def _restart(self):
        logger.warning("Event overflow, restarting session for %s", self._target.path)
        session = self._active
        if session is not None:
            session.notify_modified(None)
            session.shutdown()
            session.join()
        successor = self._successor()
        if successor is None:
            return
        self._launch_fresh(successor)

    def _new_session(self, reset: bool) -> TailSession:
        config = replace(self._config, reset=True) if reset else self._config
        return TailSession.from_config(config, self._sink, self._target)

    def _successor(self) -> TailSession | None:
        """A session reading the recreated target from offset 0, or None if it is gone again."""
        try:
            return self._new_session(reset=True)
        except TargetMissingError:
            logger.warning("%s vanished before it could be opened", self._target.path)
            return None

    def _launch_fresh(self, session: TailSession):
        try:
            self._launch(session)
        except TargetMissingError:
            logger.warning("%s vanished before it could be opened", self._target.path)

    def _launch(self, session: TailSession):
        session.start(self._on_session_failure)
        self._sessions = [s for s in self._sessions if s.is_alive()]
        self._sessions.append(session)
        self._active = session

    def _on_session_failure(self, error: BaseException):
        if self._error is None:
            self._error = error
        self.shutdown()

    def stop(self):
        """Stop the directory watch and every session this controller started."""
        self._shutdown.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=JOIN_TIMEOUT)
            self._observer = None
        for session in self._sessions:
            session.shutdown()
        for session in self._sessions:
            session.join(timeout=JOIN_TIMEOUT)
        logger.info("Stopped following %s", self._target.path)
