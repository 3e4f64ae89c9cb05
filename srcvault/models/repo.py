"""Resolved revisions and published input results."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from srcvault.errors import InvalidRevisionError

COMMIT_PATTERN = re.compile(r"^[0-9a-fA-F]{40}$")


def is_commit_hash(ref: str) -> bool:
    """Check if a ref is a full 40-character commit id."""
    return bool(COMMIT_PATTERN.match(ref))


def validate_revision(revision: str, ref: str = "", uri: str = "") -> str:
    """Return the revision if it is a full commit id, raise otherwise."""
    if not is_commit_hash(revision):
        raise InvalidRevisionError(
            f"Did not get a well-formed revision number of ref '{ref or revision}' at '{uri}': "
            f"'{revision}'"
        )
    return revision


class ResolvedRevision(BaseModel):
    """A ref resolved to a commit, plus display-only metadata."""

    model_config = ConfigDict(frozen=True)

    revision: str
    rev_count: int = Field(default=0, ge=0)
    tag: str = ""
    short_rev: str = ""


class InputResult(BaseModel):
    """Fields published for every input type."""

    model_config = ConfigDict(populate_by_name=True)

    uri: str
    store_path: str | None = Field(default=None, alias="storePath")
    sha256hash: str | None = None
    revision: str

    def to_published(self) -> dict:
        """Dump with the published key names, dropping unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class RepoInfo(InputResult):
    """Published information for a Git checkout or a node of a Git tree."""

    rev_count: int = Field(default=0, alias="revCount")
    git_tag: str = Field(default="", alias="gitTag")
    short_rev: str = Field(default="", alias="shortRev")
    submodule: str | None = None
    submods: list[RepoInfo] | None = None

    @classmethod
    def from_revision(
        cls,
        uri: str,
        resolved: ResolvedRevision,
        store_path: str | None = None,
        sha256hash: str | None = None,
    ) -> "RepoInfo":
        return cls(
            uri=uri,
            store_path=store_path,
            sha256hash=sha256hash,
            revision=resolved.revision,
            rev_count=resolved.rev_count,
            git_tag=resolved.tag,
            short_rev=resolved.short_rev,
        )

    def find_submodule(self, name: str) -> RepoInfo | None:
        for child in self.submods or []:
            if child.submodule == name:
                return child
        return None


class DedupCacheEntry(BaseModel):
    """Durable record of a materialized revision."""

    uri: str
    ref: str
    revision: str
    sha256hash: str
    content_path: str


class PathCacheEntry(BaseModel):
    """Durable record of a path input's content."""

    srcpath: str
    timestamp: int
    lastseen: int
    sha256hash: str
    content_path: str


class CommitInfo(BaseModel):
    """A commit in a revision range with its author."""

    revision: str
    author: str
    email: str
    timestamp: datetime | None = None
