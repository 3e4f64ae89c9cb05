"""Input resolvers for SrcVault."""

from srcvault.resolvers.base import GitResolverBase, InputResolver, ResolverContext
from srcvault.resolvers.git import GitInputResolver
from srcvault.resolvers.gittree import GitTreeResolver, SubmoduleWalker
from srcvault.resolvers.path import PathInputResolver
from srcvault.resolvers.registry import InputRegistry

__all__ = [
    "InputResolver",
    "GitResolverBase",
    "ResolverContext",
    "GitInputResolver",
    "GitTreeResolver",
    "SubmoduleWalker",
    "PathInputResolver",
    "InputRegistry",
]
