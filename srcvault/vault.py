"""Main SrcVault class - unified interface for fetching build inputs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from srcvault.cache import DedupCache
from srcvault.locks import FileLockManager, LocalLockManager, LockManager
from srcvault.models.config import VaultConfig
from srcvault.models.repo import CommitInfo, InputResult
from srcvault.resolvers.base import ResolverContext
from srcvault.resolvers.registry import InputRegistry
from srcvault.runner import ProcessRunner
from srcvault.store import ContentStore, LocalContentStore

logger = logging.getLogger(__name__)


class SrcVault:
    """Main interface for resolving and caching build inputs."""

    def __init__(
        self,
        config: VaultConfig | None = None,
        *,
        runner: ProcessRunner | None = None,
        store: ContentStore | None = None,
        locks: LockManager | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config or VaultConfig.load()
        self.runner = runner or ProcessRunner()
        self._store = store
        self._locks = locks
        self._http_client = http_client

        self._dedup: DedupCache | None = None
        self._registry: InputRegistry | None = None

        if self.config.debug:
            logging.getLogger("srcvault").setLevel(logging.DEBUG)

    @classmethod
    def from_config_file(cls, path: str | Path | None = None, **kwargs: Any) -> "SrcVault":
        return cls(VaultConfig.load(Path(path) if path else None), **kwargs)

    @property
    def store(self) -> ContentStore:
        if self._store is None:
            self._store = LocalContentStore(self.config.store_dir)
        return self._store

    @property
    def dedup(self) -> DedupCache:
        if self._dedup is None:
            self._dedup = DedupCache(self.config.database)
        return self._dedup

    @property
    def locks(self) -> LockManager:
        if self._locks is None:
            if self.config.lock_backend == "local":
                self._locks = LocalLockManager(self.config.lock_timeout)
            elif self.config.lock_backend == "file":
                self._locks = FileLockManager(self.config.lock_dir, self.config.lock_timeout)
            else:
                raise ValueError(f"Unknown lock backend: {self.config.lock_backend}")
        return self._locks

    @property
    def registry(self) -> InputRegistry:
        if self._registry is None:
            context = ResolverContext(
                config=self.config,
                runner=self.runner,
                store=self.store,
                dedup=self.dedup,
                locks=self.locks,
            )
            self._registry = InputRegistry(context, http_client=self._http_client)
        return self._registry

    def supported_input_types(self) -> dict[str, str]:
        return self.registry.supported_input_types()

    def resolve(
        self,
        input_type: str,
        name: str,
        value: str,
        project: str = "",
        jobset: str = "",
    ) -> InputResult:
        """Resolve an input and return the typed result."""
        logger.debug(f"Fetching {input_type} input {name} for {project}:{jobset}")
        return self.registry.fetch_input(input_type, name, value, project, jobset)

    def fetch_input(
        self,
        input_type: str,
        name: str,
        value: str,
        project: str = "",
        jobset: str = "",
    ) -> dict[str, Any]:
        """Resolve an input and return it with the published key names."""
        return self.resolve(input_type, name, value, project, jobset).to_published()

    def get_commits(
        self, input_type: str, value: str, rev1: str, rev2: str
    ) -> list[CommitInfo]:
        return self.registry.get_commits(input_type, value, rev1, rev2)

    def cache_stats(self) -> dict[str, Any]:
        """Get durable cache statistics."""
        return self.dedup.stats()

    def close(self) -> None:
        if self._registry is not None:
            self._registry.close()
