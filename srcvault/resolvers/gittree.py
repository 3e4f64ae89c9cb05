"""Resolver for ``gittree`` inputs: a repository and all its submodules.

Every node of the tree (the top repository and each submodule, recursively)
gets its own mirror, lock, revision and stored copy. The published result is
the whole tree, stored as a canonical JSON manifest.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from urllib.parse import urljoin

from srcvault.errors import SubmoduleCycleError
from srcvault.mirror import RepositoryMirror
from srcvault.models.config import DEFAULT_TIMEOUT, GIT_TREE_SECTION
from srcvault.models.repo import DedupCacheEntry, RepoInfo
from srcvault.models.spec import parse_input_value
from srcvault.publisher import ResultPublisher
from srcvault.resolvers.base import GitResolverBase, ResolverContext, dedup_entry

logger = logging.getLogger(__name__)

_SCP_LIKE = re.compile(r"^([^/:]+@)?[^/:]+:(?!//)")


@dataclass(frozen=True)
class Submodule:
    """A declared submodule joined with its pinned commit."""

    name: str
    path: str
    url: str
    revision: str


def resolve_submodule_url(parent_uri: str, url: str) -> str:
    """Resolve a ``./`` or ``../`` submodule URL against its superproject."""
    if not url.startswith(("./", "../")):
        return url
    if "://" in parent_uri:
        return urljoin(parent_uri.rstrip("/") + "/", url)
    match = _SCP_LIKE.match(parent_uri)
    if match:
        prefix = parent_uri[: match.end()]
        return prefix + posixpath.normpath(posixpath.join(parent_uri[match.end():], url))
    return posixpath.normpath(posixpath.join(parent_uri, url))


class SubmoduleWalker:
    """Resolve a repository and, recursively, each of its submodules."""

    def __init__(self, resolver: GitTreeResolver) -> None:
        self.resolver = resolver

    def discover(self, mirror: RepositoryMirror) -> list[Submodule]:
        """Join ``.gitmodules`` declarations with pinned commits by path.

        A declaration without a pinned commit, or a pinned commit without a
        declaration, is skipped.
        """
        entries = mirror.submodule_entries()
        if not entries:
            return []
        commits = mirror.submodule_commits()

        submodules: list[Submodule] = []
        declared_paths = set()
        for entry in entries:
            declared_paths.add(entry.path)
            revision = commits.get(entry.path)
            if revision is None:
                logger.debug(f"Submodule {entry.name} of {mirror.uri} has no pinned commit, skipping")
                continue
            submodules.append(
                Submodule(
                    name=entry.name,
                    path=entry.path,
                    url=resolve_submodule_url(mirror.uri, entry.url),
                    revision=revision,
                )
            )
        for path in sorted(set(commits) - declared_paths):
            logger.debug(f"Pinned commit at {path} of {mirror.uri} is not declared, skipping")
        return submodules

    def walk(
        self,
        uri: str,
        ref: str,
        timeout: int = DEFAULT_TIMEOUT,
        in_progress: frozenset[tuple[str, str]] = frozenset(),
        pending: list[DedupCacheEntry] | None = None,
    ) -> RepoInfo:
        """Resolve ``uri`` at ``ref`` and all submodules below it.

        The lock of ``uri``'s mirror is released before descending, so only
        requests for the identical URI contend. DedupCache entries for the
        stored copies are appended to ``pending`` instead of being written.
        """
        if pending is None:
            pending = []
        mirror = self.resolver.mirror(uri)
        with self.resolver.context.locks.hold(mirror.lock_key):
            mirror.ensure()
            mirror.update_ref(ref, timeout)
            mirror.checkout(ref)
            resolved = mirror.resolve(ref)

            key = (uri, resolved.revision)
            if key in in_progress:
                raise SubmoduleCycleError(uri, resolved.revision)

            stored = self.resolver.materialize(
                mirror, ref, resolved.revision, timeout=timeout, record=False
            )
            pending.append(dedup_entry(mirror.uri, ref, resolved.revision, stored))
            submodules = self.discover(mirror)

        node = RepoInfo.from_revision(mirror.fetch_uri, resolved, stored.path, stored.sha256)
        children: list[RepoInfo] = []
        for submodule in submodules:
            child = self.walk(
                submodule.url, submodule.revision, timeout, in_progress | {key}, pending
            )
            children.append(child.model_copy(update={"submodule": submodule.path}))
        node.submods = sorted(children, key=lambda child: child.submodule or "")
        return node


class GitTreeResolver(GitResolverBase):
    """Resolve revision and content information for a whole submodule tree."""

    input_types = {"gittree": "Git repo tree information"}
    section_name = GIT_TREE_SECTION
    mirror_kind = "gittree"
    ssh_fallback = True

    def __init__(self, context: ResolverContext) -> None:
        super().__init__(context)
        self.walker = SubmoduleWalker(self)
        self.publisher = ResultPublisher(context.store)

    def fetch_input(
        self,
        input_type: str,
        name: str,
        value: str,
        project: str,
        jobset: str,
    ) -> RepoInfo | None:
        if not self.handles(input_type):
            return None

        spec = parse_input_value(value)
        cfg = self.effective_config(spec, project, jobset, name)
        mirror = self.mirror(spec.uri)
        freshness = self.context.freshness

        if cfg.cache_period is not None:
            cached = freshness.get(mirror.path, spec.ref, cfg.cache_period)
            if cached is not None:
                logger.debug(f"Returning cached tree for {name} ref {spec.ref}")
                return cached

        pending: list[DedupCacheEntry] = []
        tree = self.walker.walk(spec.uri, spec.ref, cfg.timeout, pending=pending)
        for entry in pending:
            self.context.dedup.upsert(entry)
        info = self.publisher.publish(tree)

        if cfg.cache_period is not None:
            with self.context.locks.hold(mirror.lock_key):
                freshness.put(mirror.path, spec.ref, info)
                freshness.sweep(mirror.path, cfg.cache_period)
        return info
