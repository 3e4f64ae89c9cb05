"""Exception hierarchy for input resolution."""

from __future__ import annotations


class SrcVaultError(Exception):
    """Base class for all srcvault errors."""


class SpecParseError(SrcVaultError, ValueError):
    """Raised when an input value string cannot be parsed."""


class InvalidRevisionError(SrcVaultError, ValueError):
    """Raised when a ref or resolved revision is not a full commit id."""


class MirrorError(SrcVaultError):
    """Raised when a VCS command against a mirror fails fatally."""

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = "") -> None:
        super().__init__(f"{message}:\n{stderr}" if stderr else message)
        self.command = command or []
        self.stderr = stderr


class FetchError(SrcVaultError):
    """Raised when a path input cannot be copied or downloaded."""


class LockTimeoutError(SrcVaultError, TimeoutError):
    """Raised when a mirror lock is not acquired within the timeout."""

    def __init__(self, key: str, timeout: float) -> None:
        super().__init__(f"Timeout acquiring lock '{key}' after {timeout}s")
        self.key = key
        self.timeout = timeout


class SubmoduleCycleError(SrcVaultError):
    """Raised when a submodule graph refers back to a repository being resolved."""

    def __init__(self, uri: str, revision: str) -> None:
        super().__init__(f"Submodule cycle detected at {uri} ({revision})")
        self.uri = uri
        self.revision = revision


class UnsupportedInputError(SrcVaultError):
    """Raised when no registered resolver handles an input type."""
