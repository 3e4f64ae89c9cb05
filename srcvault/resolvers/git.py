"""Resolver for ``git`` inputs: a checkout of one ref stored by content."""

from __future__ import annotations

import logging

from srcvault.models.config import GIT_INPUT_SECTION
from srcvault.models.repo import RepoInfo
from srcvault.models.spec import parse_input_value
from srcvault.resolvers.base import GitResolverBase

logger = logging.getLogger(__name__)


class GitInputResolver(GitResolverBase):
    """Fetch a branch, tag or commit of a repository into the store.

    Repeated requests for the same ref within ``cache_period`` are answered
    from the freshness cache without contacting the remote; requests for an
    already stored revision reuse the stored copy.
    """

    input_types = {"git": "Git checkout"}
    section_name = GIT_INPUT_SECTION
    mirror_kind = "git"

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
                logger.debug(f"Returning cached information for {name} ref {spec.ref}")
                return cached

        with self.context.locks.hold(mirror.lock_key):
            mirror.ensure()
            mirror.update_ref(spec.ref, cfg.timeout)

            if spec.deep_clone:
                mirror.populate_stacked_branches(spec.ref, cfg.timeout)

            resolved = mirror.resolve(spec.ref)
            stored = self.materialize(
                mirror,
                spec.ref,
                resolved.revision,
                deep_clone=spec.deep_clone,
                timeout=cfg.timeout,
            )
            info = RepoInfo.from_revision(spec.uri, resolved, stored.path, stored.sha256)

            if cfg.cache_period is not None:
                logger.debug(f"Caching git information for {name} ref {spec.ref}")
                freshness.put(mirror.path, spec.ref, info)
                freshness.sweep(mirror.path, cfg.cache_period)

        return info
