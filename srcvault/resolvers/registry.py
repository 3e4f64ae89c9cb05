"""Resolver registry and unified fetch interface.

Dispatches an input to every registered resolver; the first one that
recognizes the input type answers.
"""

from __future__ import annotations

import logging

import httpx

from srcvault.errors import UnsupportedInputError
from srcvault.models.repo import CommitInfo, InputResult
from srcvault.resolvers.base import InputResolver, ResolverContext
from srcvault.resolvers.git import GitInputResolver
from srcvault.resolvers.gittree import GitTreeResolver
from srcvault.resolvers.path import PathInputResolver

logger = logging.getLogger(__name__)


class InputRegistry:
    """Registry of all available input resolvers."""

    # Built-in resolvers
    RESOLVER_CLASSES: dict[str, type[InputResolver]] = {
        "git": GitInputResolver,
        "gittree": GitTreeResolver,
        "path": PathInputResolver,
    }

    def __init__(
        self,
        context: ResolverContext,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.context = context
        self._resolvers: dict[str, InputResolver] = {}
        for resolver_id, resolver_class in self.RESOLVER_CLASSES.items():
            if resolver_class is PathInputResolver:
                self._resolvers[resolver_id] = PathInputResolver(context, http_client=http_client)
            else:
                self._resolvers[resolver_id] = resolver_class(context)

    def get(self, resolver_id: str) -> InputResolver | None:
        """Get a specific resolver by ID."""
        return self._resolvers.get(resolver_id)

    def list_resolvers(self) -> list[str]:
        return list(self._resolvers.keys())

    def supported_input_types(self) -> dict[str, str]:
        """Input type tags with a human readable description."""
        types: dict[str, str] = {}
        for resolver in self._resolvers.values():
            types.update(resolver.input_types)
        return types

    def fetch_input(
        self,
        input_type: str,
        name: str,
        value: str,
        project: str = "",
        jobset: str = "",
    ) -> InputResult:
        """Resolve an input with the resolver that handles its type."""
        for resolver in self._resolvers.values():
            result = resolver.fetch_input(input_type, name, value, project, jobset)
            if result is not None:
                return result
        raise UnsupportedInputError(f"Unsupported input type '{input_type}' for input '{name}'")

    def get_commits(self, input_type: str, value: str, rev1: str, rev2: str) -> list[CommitInfo]:
        """Commits between two revisions from every resolver that knows the type."""
        commits: list[CommitInfo] = []
        for resolver in self._resolvers.values():
            commits.extend(resolver.get_commits(input_type, value, rev1, rev2))
        return commits

    def close(self) -> None:
        """Close all resolver connections."""
        for resolver in self._resolvers.values():
            if hasattr(resolver, "close"):
                resolver.close()
