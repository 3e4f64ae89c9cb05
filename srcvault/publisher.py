"""Canonical serialization of resolved trees into the content store."""

from __future__ import annotations

import json

from srcvault.models.repo import RepoInfo
from srcvault.store import ContentStore

MANIFEST_NAME = "gittree.json"


class ResultPublisher:
    """Serialize a resolved tree and add it to the content store.

    Keys are sorted and submodules ordered by name, so an unchanged tree
    always produces the same bytes and therefore the same store path.
    """

    def __init__(self, store: ContentStore) -> None:
        self.store = store

    @staticmethod
    def serialize(info: RepoInfo) -> bytes:
        data = info.to_published()
        return json.dumps(data, sort_keys=True, separators=(",", ":")).encode()

    def publish(self, info: RepoInfo) -> RepoInfo:
        """Store the tree manifest and return the tree pointing at it."""
        stored = self.store.add_bytes(self.serialize(info), MANIFEST_NAME)
        self.store.pin_temporary(stored.path)
        return info.model_copy(update={"store_path": stored.path, "sha256hash": stored.sha256})
