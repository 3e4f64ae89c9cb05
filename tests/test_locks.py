"""Tests for per-mirror locks."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from srcvault.errors import LockTimeoutError
from srcvault.locks import FileLockManager, LocalLockManager


def _run_concurrently(manager, key: str, workers: int = 4) -> int:
    """Hold ``key`` from several threads; return the peak number of holders."""
    active = 0
    peak = 0
    guard = threading.Lock()

    def work():
        nonlocal active, peak
        with manager.hold(key):
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with guard:
                active -= 1

    threads = [threading.Thread(target=work) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return peak


class TestLocalLockManager:
    def test_exclusive_per_key(self):
        assert _run_concurrently(LocalLockManager(), "git-abc") == 1

    def test_distinct_keys_do_not_contend(self):
        manager = LocalLockManager()
        with manager.hold("git-a"):
            with manager.hold("git-b", timeout=0.1):
                assert manager.is_locked("git-a")
                assert manager.is_locked("git-b")
        assert not manager.is_locked("git-a")

    def test_timeout(self):
        manager = LocalLockManager()
        with manager.hold("git-a"):
            with pytest.raises(LockTimeoutError) as exc_info:
                with manager.hold("git-a", timeout=0.05):
                    pass
        assert exc_info.value.key == "git-a"

    def test_default_timeout(self):
        manager = LocalLockManager(default_timeout=0.05)
        with manager.hold("git-a"):
            with pytest.raises(TimeoutError):
                with manager.hold("git-a"):
                    pass

    def test_released_on_error(self):
        manager = LocalLockManager()
        with pytest.raises(RuntimeError):
            with manager.hold("git-a"):
                raise RuntimeError("boom")
        assert not manager.is_locked("git-a")


class TestFileLockManager:
    def test_lock_file_per_key(self, temp_dir: Path):
        manager = FileLockManager(temp_dir / "locks")

        with manager.hold("git-abc"):
            assert manager.lock_path("git-abc").exists()

        assert manager.lock_path("git-abc") == temp_dir / "locks" / "git-abc.lock"
        assert manager.lock_path("../evil key").parent == temp_dir / "locks"

    def test_exclusive_per_key(self, temp_dir: Path):
        manager = FileLockManager(temp_dir / "locks")
        assert _run_concurrently(manager, "git-abc") == 1

    def test_timeout(self, temp_dir: Path):
        manager = FileLockManager(temp_dir / "locks", poll_interval=0.01)
        holder = FileLockManager(temp_dir / "locks")

        with holder.hold("git-abc"):
            with pytest.raises(LockTimeoutError):
                with manager.hold("git-abc", timeout=0.05):
                    pass

        with manager.hold("git-abc", timeout=0.05):
            pass
