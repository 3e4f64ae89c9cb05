"""Base input resolver interface."""

from __future__ import annotations

import logging
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from srcvault.cache import DedupCache, FreshnessCache
from srcvault.mirror import RepositoryMirror
from srcvault.models.config import DEFAULT_TIMEOUT, EffectiveConfig, resolve_config
from srcvault.models.repo import DedupCacheEntry
from srcvault.models.spec import RepositorySpec, parse_input_value
from srcvault.runner import ProcessRunner
from srcvault.store import StoreObject

if TYPE_CHECKING:
    from srcvault.locks import LockManager
    from srcvault.models.config import VaultConfig
    from srcvault.models.repo import CommitInfo, InputResult
    from srcvault.store import ContentStore

logger = logging.getLogger(__name__)

_STORE_NAME = re.compile(r"[^A-Za-z0-9+._-]")
_LOWER_HEX = re.compile(r"^[0-9a-f]+$")


@dataclass
class ResolverContext:
    """Collaborators shared by all resolvers of one vault."""

    config: VaultConfig
    runner: ProcessRunner
    store: ContentStore
    dedup: DedupCache
    locks: LockManager
    freshness: FreshnessCache = field(init=False)

    def __post_init__(self) -> None:
        self.freshness = FreshnessCache(self.store)


def store_name(uri: str) -> str:
    """Readable store object name from the last URI component."""
    name = uri.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return _STORE_NAME.sub("_", name) or "source"


def dedup_entry(uri: str, ref: str, revision: str, stored: StoreObject) -> DedupCacheEntry:
    return DedupCacheEntry(
        uri=uri,
        ref=ref,
        revision=revision,
        sha256hash=stored.sha256,
        content_path=stored.path,
    )


class InputResolver(ABC):
    """Abstract base class for input resolvers.

    Each resolver advertises the input type tags it handles and returns
    ``None`` from ``fetch_input`` for any other type.
    """

    input_types: ClassVar[dict[str, str]] = {}

    def __init__(self, context: ResolverContext) -> None:
        self.context = context

    def handles(self, input_type: str) -> bool:
        return input_type in self.input_types

    @abstractmethod
    def fetch_input(
        self,
        input_type: str,
        name: str,
        value: str,
        project: str,
        jobset: str,
    ) -> InputResult | None:
        """Resolve an input value, or return None if the type is not ours."""
        ...

    def get_commits(
        self, input_type: str, value: str, rev1: str, rev2: str
    ) -> list[CommitInfo]:
        """Commits between two revisions of an input; empty if unsupported."""
        return []


class GitResolverBase(InputResolver):
    """Shared mirror handling for the Git-based resolvers."""

    section_name: ClassVar[str] = ""
    mirror_kind: ClassVar[str] = "git"
    ssh_fallback: ClassVar[bool] = False

    @property
    def mirror_dir(self) -> Path:
        return self.context.config.scm_cache_dir / self.mirror_kind

    def mirror(self, uri: str) -> RepositoryMirror:
        return RepositoryMirror(
            uri, self.mirror_dir, runner=self.context.runner, ssh_fallback=self.ssh_fallback
        )

    def effective_config(
        self, spec: RepositorySpec, project: str, jobset: str, name: str
    ) -> EffectiveConfig:
        return resolve_config(
            self.context.config.section(self.section_name),
            project,
            jobset,
            name,
            spec,
            section_name=self.section_name,
        )

    def materialize(
        self,
        mirror: RepositoryMirror,
        ref: str,
        revision: str,
        deep_clone: bool = False,
        timeout: int = DEFAULT_TIMEOUT,
        record: bool = True,
    ) -> StoreObject:
        """Store the tree of ``revision``, reusing a recorded copy if present.

        Must be called with the mirror's lock held. With ``record=False`` nothing is
        written to the DedupCache and the caller records the entry later.
        """
        store = self.context.store
        dedup = self.context.dedup

        entry = dedup.find(mirror.uri, ref, revision)
        if entry is not None:
            store.pin_temporary(entry.content_path)
            if store.is_valid(entry.content_path):
                logger.debug(f"Reusing {entry.content_path} for {mirror.uri} {ref}")
                return StoreObject(path=entry.content_path, sha256=entry.sha256hash)
            logger.debug(f"Stored copy of {mirror.uri} {revision} was collected, exporting again")

        logger.info(f"Checking out Git ref {ref} from {mirror.uri}")
        with tempfile.TemporaryDirectory() as tmp_dir:
            source = mirror.export(
                revision, Path(tmp_dir) / "source", deep_clone=deep_clone, timeout=timeout
            )
            stored = store.add_path(source, store_name(mirror.uri))
        store.pin_temporary(stored.path)

        if record:
            dedup.upsert(dedup_entry(mirror.uri, ref, revision, stored))
        return stored

    def get_commits(
        self, input_type: str, value: str, rev1: str, rev2: str
    ) -> list[CommitInfo]:
        """Authors of the commits between two previously resolved revisions."""
        if not self.handles(input_type):
            return []
        if not _LOWER_HEX.match(rev1) or not _LOWER_HEX.match(rev2):
            return []
        spec = parse_input_value(value)
        return self.mirror(spec.uri).commits_between(rev1, rev2)
