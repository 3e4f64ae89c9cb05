"""Tests for the freshness and dedup caches."""

from __future__ import annotations

import os
import time
from pathlib import Path

from srcvault.cache import DedupCache, FreshnessCache
from srcvault.models.repo import DedupCacheEntry, RepoInfo
from srcvault.store import LocalContentStore

SHA = "3f786850e387550fdab836ed7e6dc881de23001b"


def _age(path: Path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


class TestFreshnessCache:
    """Tests for the on-disk freshness cache."""

    def _info(self, store: LocalContentStore) -> RepoInfo:
        obj = store.add_bytes(b"tree", "repo")
        return RepoInfo(
            uri="https://example.org/repo.git",
            store_path=obj.path,
            sha256hash=obj.sha256,
            revision=SHA,
            rev_count=3,
        )

    def test_cache_file_name(self, temp_dir: Path):
        mirror = temp_dir / "git" / "abc"
        assert FreshnessCache.cache_file(mirror, "feature/x") == temp_dir / "git" / "abc.cache_feature%2Fx"

    def test_put_then_get(self, content_store):
        cache = FreshnessCache(content_store)
        mirror = content_store.root.parent / "abc"
        info = self._info(content_store)

        cache.put(mirror, "master", info)

        assert cache.get(mirror, "master", 60).model_dump() == info.model_dump()
        assert cache.get(mirror, "other", 60) is None

    def test_expired(self, content_store):
        cache = FreshnessCache(content_store)
        mirror = content_store.root.parent / "abc"
        cache.put(mirror, "master", self._info(content_store))

        _age(cache.cache_file(mirror, "master"), 120)

        assert cache.get(mirror, "master", 60) is None

    def test_collected_store_path_is_a_miss(self, content_store):
        cache = FreshnessCache(content_store)
        mirror = content_store.root.parent / "abc"
        info = self._info(content_store)
        cache.put(mirror, "master", info)

        content_store.delete(info.store_path)

        assert cache.get(mirror, "master", 60) is None

    def test_corrupt_file_is_a_miss(self, content_store):
        cache = FreshnessCache(content_store)
        mirror = content_store.root.parent / "abc"
        cache.cache_file(mirror, "master").write_text("{not json")

        assert cache.get(mirror, "master", 60) is None

    def test_sweep_removes_only_stale_files(self, content_store):
        cache = FreshnessCache(content_store)
        mirror = content_store.root.parent / "abc"
        other_mirror = content_store.root.parent / "def"
        info = self._info(content_store)
        for ref in ("master", "old", "older"):
            cache.put(mirror, ref, info)
        cache.put(other_mirror, "stale", info)
        _age(cache.cache_file(mirror, "old"), 120)
        _age(cache.cache_file(mirror, "older"), 300)
        _age(cache.cache_file(other_mirror, "stale"), 300)

        assert cache.sweep(mirror, 60) == 2

        assert cache.cache_file(mirror, "master").exists()
        assert not cache.cache_file(mirror, "old").exists()
        assert cache.cache_file(other_mirror, "stale").exists()


class TestDedupCache:
    """Tests for the durable dedup cache."""

    def _entry(self, **overrides) -> DedupCacheEntry:
        values = {
            "uri": "https://example.org/repo.git",
            "ref": "master",
            "revision": SHA,
            "sha256hash": "aa" * 32,
            "content_path": "/store/aaaa-repo",
        }
        values.update(overrides)
        return DedupCacheEntry(**values)

    def test_find_missing(self, dedup_cache: DedupCache):
        assert dedup_cache.find("https://example.org/repo.git", "master", SHA) is None

    def test_upsert_and_find(self, dedup_cache: DedupCache):
        entry = self._entry()
        dedup_cache.upsert(entry)

        assert dedup_cache.find(entry.uri, entry.ref, entry.revision) == entry

    def test_upsert_replaces(self, dedup_cache: DedupCache):
        dedup_cache.upsert(self._entry())
        dedup_cache.upsert(self._entry(content_path="/store/bbbb-repo"))

        found = dedup_cache.find("https://example.org/repo.git", "master", SHA)
        assert found.content_path == "/store/bbbb-repo"
        assert dedup_cache.count() == 1

    def test_key_includes_ref(self, dedup_cache: DedupCache):
        dedup_cache.upsert(self._entry())
        dedup_cache.upsert(self._entry(ref=SHA))

        assert dedup_cache.count("https://example.org/repo.git") == 2
        assert dedup_cache.count("https://example.org/other.git") == 0

    def test_survives_reopen(self, vault_config, dedup_cache: DedupCache):
        dedup_cache.upsert(self._entry())

        reopened = DedupCache(vault_config.database)
        assert reopened.find("https://example.org/repo.git", "master", SHA) is not None

    def test_path_records_keep_first_timestamp(self, dedup_cache: DedupCache):
        first = dedup_cache.record_path("/src", "h1", "/store/h1-src", 1000)
        again = dedup_cache.record_path("/src", "h1", "/store/h1-src", 2000)
        changed = dedup_cache.record_path("/src", "h2", "/store/h2-src", 3000)

        assert first.timestamp == again.timestamp == 1000
        assert again.lastseen == 2000
        assert changed.timestamp == 3000

        recent = dedup_cache.find_recent_path("/src", 2500)
        assert recent.sha256hash == "h2"
        assert dedup_cache.find_recent_path("/src", 3000) is None

    def test_stats(self, dedup_cache: DedupCache):
        dedup_cache.upsert(self._entry())
        dedup_cache.upsert(self._entry(uri="https://example.org/other.git"))
        dedup_cache.record_path("/src", "h1", "/store/h1-src", 1000)

        stats = dedup_cache.stats()

        assert stats["git_inputs"] == 2
        assert stats["path_inputs"] == 1
        assert stats["by_uri"]["https://example.org/other.git"] == 1
