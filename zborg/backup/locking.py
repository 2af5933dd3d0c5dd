"""
Mutual exclusion between runs sharing an archive target.
"""

import fcntl
import logging
import os
from pathlib import Path


logger = logging.getLogger(__name__)


class TargetLockedError(Exception):
    """Raised when another run already holds the target lock."""
    pass


class TargetLock:
    """
    Exclusive, non-blocking flock on a lock file under the target root.

    The kernel releases the lock when the holding process exits, so a
    crashed run never leaves a lock behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd = None

    def acquire(self):
        if self.is_held:
            return

        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise TargetLockedError(f"Another backup run holds {self.path}")

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug(f"Acquired lock {self.path}")

    def release(self):
        if not self.is_held:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug(f"Released lock {self.path}")

    @property
    def is_held(self) -> bool:
        return self._fd is not None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
