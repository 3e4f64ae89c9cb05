"""Per-mirror exclusive locks.

A lock is identified by an explicit key (derived from the mirror identity),
not by a filesystem path. Two implementations share one interface:

- ``LocalLockManager`` keeps a map of mutexes for single-process deployments.
- ``FileLockManager`` uses ``flock`` on one lock file per key so that separate
  processes sharing a cache directory exclude each other.

Both wait forever by default. A caller that dies while holding a file lock
releases it when its file descriptor is closed by the OS; a hung caller
stalls other fetches of the same key until it exits.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

try:
    import fcntl
except ImportError:  # pragma: no cover - windows
    fcntl = None  # type: ignore[assignment]

from srcvault.errors import LockTimeoutError

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class LockManager(ABC):
    """Exclusive, blocking locks keyed by mirror identity."""

    def __init__(self, default_timeout: float | None = None) -> None:
        self.default_timeout = default_timeout

    @abstractmethod
    @contextmanager
    def hold(self, key: str, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        ...

    def _timeout(self, timeout: float | None) -> float | None:
        return self.default_timeout if timeout is None else timeout


class LocalLockManager(LockManager):
    """In-process map of mutexes, one per key."""

    def __init__(self, default_timeout: float | None = None) -> None:
        super().__init__(default_timeout)
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str, timeout: float | None = None) -> Iterator[None]:
        timeout = self._timeout(timeout)
        lock = self._lock_for(key)
        acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire()
        if not acquired:
            raise LockTimeoutError(key, timeout or 0)
        logger.debug(f"Acquired lock {key}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Released lock {key}")

    def is_locked(self, key: str) -> bool:
        return self._lock_for(key).locked()


class FileLockManager(LockManager):
    """Cross-process locks using ``flock`` on ``<lock_dir>/<key>.lock``.

    ``flock`` locks belong to the open file description, so threads of one
    process using separate descriptors also exclude each other.
    """

    def __init__(
        self,
        lock_dir: Path,
        default_timeout: float | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        super().__init__(default_timeout)
        if fcntl is None:
            raise RuntimeError("FileLockManager requires fcntl; use LocalLockManager")
        self.lock_dir = lock_dir
        self.poll_interval = poll_interval

    def lock_path(self, key: str) -> Path:
        return self.lock_dir / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.lock"

    @contextmanager
    def hold(self, key: str, timeout: float | None = None) -> Iterator[None]:
        timeout = self._timeout(timeout)
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path(key)), os.O_CREAT | os.O_RDWR)
        try:
            self._acquire(fd, key, timeout)
            logger.debug(f"Acquired lock {key}")
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                logger.debug(f"Released lock {key}")
        finally:
            os.close(fd)

    def _acquire(self, fd: int, key: str, timeout: float | None) -> None:
        if timeout is None:
            fcntl.flock(fd, fcntl.LOCK_EX)
            return

        start = time.monotonic()
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() - start >= timeout:
                    logger.error(f"Timeout acquiring lock {key}")
                    raise LockTimeoutError(key, timeout) from None
                time.sleep(self.poll_interval)
