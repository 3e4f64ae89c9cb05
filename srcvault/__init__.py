"""SrcVault - Fetch, mirror and cache build inputs from version control."""

from srcvault.models.config import VaultConfig
from srcvault.models.repo import InputResult, RepoInfo
from srcvault.vault import SrcVault

__version__ = "0.1.0"
__all__ = ["SrcVault", "VaultConfig", "InputResult", "RepoInfo"]
