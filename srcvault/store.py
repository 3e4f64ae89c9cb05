"""Content-addressed store used to hold materialized inputs.

The store decides where content lives; this subsystem only adds objects,
asks whether they still exist and pins them while it needs them.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from srcvault.errors import FetchError

logger = logging.getLogger(__name__)

_NAME_CHARS = re.compile(r"[^A-Za-z0-9+._?=-]")

_CHUNK_SIZE = 1 << 16


@dataclass(frozen=True)
class StoreObject:
    """A stored object and the sha256 of its content."""

    path: str
    sha256: str


class ContentStore(ABC):
    """Interface to the content-addressed store."""

    @abstractmethod
    def add_bytes(self, data: bytes, name: str) -> StoreObject:
        """Add a byte blob, returning its content-addressed location."""
        ...

    @abstractmethod
    def add_path(self, path: Path, name: str) -> StoreObject:
        """Add a file or directory tree, returning its location."""
        ...

    @abstractmethod
    def is_valid(self, path: str) -> bool:
        """Check if a previously returned path is still present."""
        ...

    @abstractmethod
    def pin_temporary(self, path: str) -> None:
        """Protect a path from collection for the lifetime of this process."""
        ...


def hash_path(path: Path) -> str:
    """Hash a file or directory tree deterministically.

    Directory entries are visited in sorted order; each contributes its
    relative path, type, executable bit and content (or link target).
    """
    digest = hashlib.sha256()
    if path.is_file() and not path.is_symlink():
        _hash_file(digest, path)
        return digest.hexdigest()

    for root, dirs, files in os.walk(path):
        dirs.sort()
        root_path = Path(root)
        for name in sorted(dirs + files):
            entry = root_path / name
            rel = entry.relative_to(path).as_posix()
            if entry.is_symlink():
                digest.update(f"link\0{rel}\0{os.readlink(entry)}\0".encode())
            elif entry.is_dir():
                digest.update(f"dir\0{rel}\0".encode())
            else:
                executable = "x" if os.access(entry, os.X_OK) else "-"
                digest.update(f"file\0{rel}\0{executable}\0".encode())
                _hash_file(digest, entry)
    return digest.hexdigest()


def _hash_file(digest: "hashlib._Hash", path: Path) -> None:
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)


class LocalContentStore(ContentStore):
    """Directory-backed store: objects live at ``<root>/<digest[:32]>-<name>``.

    Adding identical content again returns the existing object untouched.
    """

    def __init__(self, root: Path) -> None:
        root.mkdir(parents=True, exist_ok=True)
        self.root = root.resolve()
        self._pins: set[str] = set()
        self._lock = threading.Lock()

    def _object_path(self, sha256: str, name: str) -> Path:
        safe_name = _NAME_CHARS.sub("_", name) or "source"
        return self.root / f"{sha256[:32]}-{safe_name}"

    def add_bytes(self, data: bytes, name: str) -> StoreObject:
        sha256 = hashlib.sha256(data).hexdigest()
        target = self._object_path(sha256, name)
        if not target.exists():
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
            logger.debug(f"Added {len(data)} bytes as {target}")
        return StoreObject(path=str(target), sha256=sha256)

    def add_path(self, path: Path, name: str) -> StoreObject:
        if not path.exists():
            raise FetchError(f"Cannot add missing path {path} to the store")

        sha256 = hash_path(path)
        target = self._object_path(sha256, name)
        if target.exists():
            return StoreObject(path=str(target), sha256=sha256)

        tmp_target = Path(tempfile.mkdtemp(dir=self.root, prefix=".tmp-"))
        try:
            staged = tmp_target / "object"
            if path.is_dir():
                shutil.copytree(path, staged, symlinks=True)
            else:
                shutil.copy2(path, staged)
            try:
                os.rename(staged, target)
            except OSError:
                # Another writer added identical content first.
                if not target.exists():
                    raise
        finally:
            shutil.rmtree(tmp_target, ignore_errors=True)

        logger.debug(f"Added {path} as {target}")
        return StoreObject(path=str(target), sha256=sha256)

    def is_valid(self, path: str) -> bool:
        candidate = Path(path)
        return candidate.parent == self.root and candidate.exists()

    def pin_temporary(self, path: str) -> None:
        with self._lock:
            self._pins.add(path)

    @property
    def pinned(self) -> set[str]:
        with self._lock:
            return set(self._pins)

    def delete(self, path: str) -> bool:
        """Remove an object as a garbage collector would."""
        candidate = Path(path)
        if not self.is_valid(path):
            return False
        if candidate.is_dir() and not candidate.is_symlink():
            shutil.rmtree(candidate)
        else:
            candidate.unlink()
        with self._lock:
            self._pins.discard(path)
        return True
