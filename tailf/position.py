"""Position store: the last confirmed read offset of the followed file.

A persistent store keeps the offset as a single 8-byte big-endian unsigned
integer in a side file, locked exclusively for as long as the store is open,
so only one reader can advance a given record at a time. A transient store
keeps nothing and reports the source handle's own position.
"""

import logging
import os
import struct
import sys
import tempfile
import threading

from tailf.exceptions import PositionLockError

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)

RECORD_FORMAT = ">Q"  # 8-byte uint64 big-endian
RECORD_SIZE = 8


def default_position_file(target: str) -> str:
    """Derive the record location from the target path: <tempdir>/tailf.<sanitized path>."""
    abs_path = os.path.abspath(target)
    name = abs_path.replace(os.pathsep, "_").replace(os.sep, "_").replace(":", "_")
    return os.path.join(tempfile.gettempdir(), "tailf." + name)


def _lock_record(fd: int):
    """Take an exclusive lock over the record without blocking. Raises OSError if held."""
    if sys.platform == "win32":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_NBLCK, RECORD_SIZE)
    else:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock_record(fd: int):
    if sys.platform == "win32":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, RECORD_SIZE)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


class PositionStore:
    """Offset record for one session. Transient when ``path`` is None."""

    def __init__(self, path: str | None = None, reset: bool = False):
        self._path = path
        self._reset = reset
        self._fd: int | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "PositionStore":
        if not config.persistent:
            return cls()
        path = config.position_file or default_position_file(config.target)
        return cls(path, reset=config.reset)

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def persistent(self) -> bool:
        return self._path is not None

    @property
    def is_open(self) -> bool:
        return self._fd is not None

    def open(self):
        """Prepare the record and lock it.

        Raises:
            PositionLockError: If another reader holds the lock.
        """
        if self._path is None:
            return
        with self._lock:
            if self._fd is not None:
                return
            self._prepare_record()
            flags = os.O_RDWR | getattr(os, "O_DSYNC", 0) | getattr(os, "O_BINARY", 0)
            fd = os.open(self._path, flags)
            try:
                _lock_record(fd)
            except OSError:
                os.close(fd)
                raise PositionLockError(self._path) from None
            self._fd = fd
        logger.debug("Locked position record %s", self._path)

    def _prepare_record(self):
        """(Re)create the record as zeros on reset, or when it is missing or malformed."""
        try:
            size = os.path.getsize(self._path)
        except FileNotFoundError:
            size = None
        if self._reset or size != RECORD_SIZE:
            os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
            with open(self._path, "wb") as f:
                f.write(bytes(RECORD_SIZE))
            logger.info("Initialized position record %s", self._path)

    def read(self, source) -> int:
        """Return the stored offset, or the source's current position if there is none."""
        with self._lock:
            if self._fd is not None:
                os.lseek(self._fd, 0, os.SEEK_SET)
                data = os.read(self._fd, RECORD_SIZE)
                if len(data) == RECORD_SIZE:
                    return struct.unpack(RECORD_FORMAT, data)[0]
        return source.tell()

    def write(self, offset: int):
        with self._lock:
            if self._fd is None:
                return
            try:
                os.lseek(self._fd, 0, os.SEEK_SET)
                os.write(self._fd, struct.pack(RECORD_FORMAT, offset))
            except OSError as e:
                # Not retried; the next successful pass writes the record again
                logger.warning("Failed to persist offset %d to %s: %s", offset, self._path, e)

    def close(self):
        """Release the lock and close the record. Safe to call any number of times."""
        with self._lock:
            fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            _unlock_record(fd)
        except OSError as e:
            logger.warning("Failed to unlock position record %s: %s", self._path, e)
        finally:
            os.close(fd)
        logger.debug("Released position record %s", self._path)
