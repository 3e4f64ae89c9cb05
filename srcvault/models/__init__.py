"""Data models for SrcVault."""

from srcvault.models.config import EffectiveConfig, VaultConfig, resolve_config
from srcvault.models.repo import (
    CommitInfo,
    DedupCacheEntry,
    InputResult,
    PathCacheEntry,
    RepoInfo,
    ResolvedRevision,
    is_commit_hash,
    validate_revision,
)
from srcvault.models.spec import RepositorySpec, parse_input_value

__all__ = [
    # Input specs
    "RepositorySpec",
    "parse_input_value",
    # Configuration
    "EffectiveConfig",
    "VaultConfig",
    "resolve_config",
    # Results
    "InputResult",
    "RepoInfo",
    "ResolvedRevision",
    "CommitInfo",
    "is_commit_hash",
    "validate_revision",
    # Cache records
    "DedupCacheEntry",
    "PathCacheEntry",
]
