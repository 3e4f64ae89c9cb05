"""Caches that let repeated fetches skip network and storage work.

Two tiers:
- FreshnessCache: JSON files next to each mirror, valid for a configured
  period, so many jobsets sharing an input within that window reuse the
  first fetch without touching the remote.
- DedupCache: durable SQLite records keyed by (uri, ref, revision), so an
  already materialized revision is never exported twice.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import quote

from pydantic import ValidationError

from srcvault.models.repo import DedupCacheEntry, PathCacheEntry, RepoInfo
from srcvault.store import ContentStore

logger = logging.getLogger(__name__)

CACHE_FILE_INFIX = ".cache_"


class FreshnessCache:
    """Time-bounded on-disk cache of fetch results, keyed by mirror and ref.

    Reads take no lock; a reader may see a result that is at most one cache
    period old.
    """

    def __init__(self, store: ContentStore) -> None:
        self.store = store

    @staticmethod
    def cache_file(mirror_path: Path, ref: str) -> Path:
        return mirror_path.with_name(f"{mirror_path.name}{CACHE_FILE_INFIX}{quote(ref, safe='')}")

    def get(self, mirror_path: Path, ref: str, cache_period: int) -> RepoInfo | None:
        """Return a cached result if fresh and its store path still exists."""
        cache_file = self.cache_file(mirror_path, ref)
        try:
            age = time.time() - cache_file.stat().st_mtime
        except OSError:
            return None
        if age > cache_period:
            return None

        try:
            info = RepoInfo.model_validate(json.loads(cache_file.read_text()))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.debug(f"Ignoring unreadable cache file {cache_file}: {e}")
            return None

        if info.store_path is None or not self.store.is_valid(info.store_path):
            logger.debug(f"Rebuilding info for ref {ref}; store path was collected")
            return None
        return info

    def put(self, mirror_path: Path, ref: str, info: RepoInfo) -> None:
        cache_file = self.cache_file(mirror_path, ref)
        tmp_file = cache_file.with_name(cache_file.name + ".tmp")
        try:
            tmp_file.write_text(json.dumps(info.to_published(), sort_keys=True))
            tmp_file.replace(cache_file)
        except OSError as e:
            logger.warning(f"Could not write cache file {cache_file}: {e}")

    def sweep(self, mirror_path: Path, cache_period: int) -> int:
        """Remove cache files of this mirror older than the cache period.

        Covers refs that are no longer requested; a file that cannot be
        removed does not stop the sweep.
        """
        now = time.time()
        removed = 0
        for cache_file in mirror_path.parent.glob(f"{mirror_path.name}{CACHE_FILE_INFIX}*"):
            try:
                if now - cache_file.stat().st_mtime > cache_period:
                    cache_file.unlink()
                    removed += 1
            except OSError:
                continue
        return removed


class DedupCache:
    """SQLite-backed durable cache of materialized inputs."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS cached_git_inputs (
                    uri TEXT NOT NULL,
                    ref TEXT NOT NULL,
                    revision TEXT NOT NULL,
                    sha256hash TEXT NOT NULL,
                    content_path TEXT NOT NULL,
                    PRIMARY KEY (uri, ref, revision)
                );

                CREATE TABLE IF NOT EXISTS cached_path_inputs (
                    srcpath TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    lastseen INTEGER NOT NULL,
                    sha256hash TEXT NOT NULL,
                    content_path TEXT NOT NULL,
                    PRIMARY KEY (srcpath, sha256hash)
                );

                CREATE INDEX IF NOT EXISTS idx_path_lastseen
                    ON cached_path_inputs(srcpath, lastseen);
            """)

    def find(self, uri: str, ref: str, revision: str) -> DedupCacheEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM cached_git_inputs WHERE uri = ? AND ref = ? AND revision = ?",
                (uri, ref, revision),
            ).fetchone()
        return DedupCacheEntry(**dict(row)) if row else None

    def upsert(self, entry: DedupCacheEntry) -> None:
        """Insert or update an entry in one transaction."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO cached_git_inputs (uri, ref, revision, sha256hash, content_path)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (uri, ref, revision) DO UPDATE SET
                    sha256hash = excluded.sha256hash,
                    content_path = excluded.content_path
                """,
                (entry.uri, entry.ref, entry.revision, entry.sha256hash, entry.content_path),
            )

    def count(self, uri: str | None = None) -> int:
        with self._connect() as conn:
            if uri is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM cached_git_inputs").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM cached_git_inputs WHERE uri = ?", (uri,)
                ).fetchone()
        return row["count"]

    # Path inputs

    def find_recent_path(self, srcpath: str, since: int) -> PathCacheEntry | None:
        """Most recently seen entry for a path, if seen after ``since``."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM cached_path_inputs
                WHERE srcpath = ? AND lastseen > ?
                ORDER BY lastseen DESC LIMIT 1
                """,
                (srcpath, since),
            ).fetchone()
        return PathCacheEntry(**dict(row)) if row else None

    def record_path(
        self, srcpath: str, sha256hash: str, content_path: str, now: int
    ) -> PathCacheEntry:
        """Record a sighting of a path's content.

        The first sighting of a hash fixes its timestamp; later sightings of
        the same hash only move ``lastseen``.
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM cached_path_inputs WHERE srcpath = ? AND sha256hash = ?",
                (srcpath, sha256hash),
            ).fetchone()
            if row is None:
                conn.execute(
                    """
                    INSERT INTO cached_path_inputs
                        (srcpath, timestamp, lastseen, sha256hash, content_path)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (srcpath, now, now, sha256hash, content_path),
                )
                timestamp = now
            else:
                conn.execute(
                    """
                    UPDATE cached_path_inputs SET lastseen = ?, content_path = ?
                    WHERE srcpath = ? AND sha256hash = ?
                    """,
                    (now, content_path, srcpath, sha256hash),
                )
                timestamp = row["timestamp"]
        return PathCacheEntry(
            srcpath=srcpath,
            timestamp=timestamp,
            lastseen=now,
            sha256hash=sha256hash,
            content_path=content_path,
        )

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._connect() as conn:
            git_total = conn.execute(
                "SELECT COUNT(*) AS count FROM cached_git_inputs"
            ).fetchone()["count"]
            path_total = conn.execute(
                "SELECT COUNT(*) AS count FROM cached_path_inputs"
            ).fetchone()["count"]
            by_uri = {
                row["uri"]: row["count"]
                for row in conn.execute(
                    "SELECT uri, COUNT(*) AS count FROM cached_git_inputs GROUP BY uri"
                )
            }
        return {
            "git_inputs": git_total,
            "path_inputs": path_total,
            "by_uri": by_uri,
            "db_path": str(self.db_path),
        }
