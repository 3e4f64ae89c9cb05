"""Resolver for ``path`` inputs: a local path or a URL stored by content."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from srcvault.errors import FetchError, SpecParseError
from srcvault.models.repo import InputResult
from srcvault.models.spec import is_numeric
from srcvault.resolvers.base import InputResolver, ResolverContext, store_name
from srcvault.store import StoreObject

logger = logging.getLogger(__name__)

DEFAULT_FREQ = 30


def parse_path_value(value: str) -> tuple[str, int]:
    """Split ``<uri> [freq]`` into the uri and the recheck interval in seconds."""
    tokens = value.split()
    if not tokens or len(tokens) > 2:
        raise SpecParseError(f"Invalid path input value '{value}'")
    uri = tokens[0]
    if len(tokens) == 1:
        return uri, DEFAULT_FREQ
    if not is_numeric(tokens[1]) or int(tokens[1]) < 0:
        raise SpecParseError(f"Invalid check frequency '{tokens[1]}' in '{value}'")
    return uri, int(tokens[1])


def local_path(uri: str) -> Path | None:
    """The filesystem path a uri refers to, or None for remote uris."""
    if uri.startswith("file://"):
        return Path(unquote(urlparse(uri).path))
    if uri.startswith("/"):
        return Path(uri)
    return None


def format_revision(timestamp: int) -> str:
    return time.strftime("%Y%m%d%H%M%S", time.gmtime(timestamp))


class PathInputResolver(InputResolver):
    """Store the content behind a path or URL.

    Content is rechecked at most every ``freq`` seconds. The revision is the
    UTC time the current content was first seen, so unchanged content keeps
    its revision across rechecks.
    """

    input_types = {"path": "Local path or URL"}

    def __init__(self, context: ResolverContext, http_client: httpx.Client | None = None) -> None:
        super().__init__(context)
        self._client = http_client

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=30.0)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def fetch_input(
        self,
        input_type: str,
        name: str,
        value: str,
        project: str,
        jobset: str,
    ) -> InputResult | None:
        if not self.handles(input_type):
            return None

        uri, freq = parse_path_value(value)
        store = self.context.store
        dedup = self.context.dedup
        now = int(time.time())

        entry = dedup.find_recent_path(uri, now - freq)
        if entry is not None and store.is_valid(entry.content_path):
            logger.debug(f"Path {uri} was checked {now - entry.lastseen}s ago, reusing")
            store.pin_temporary(entry.content_path)
            return InputResult(
                uri=uri,
                store_path=entry.content_path,
                sha256hash=entry.sha256hash,
                revision=format_revision(entry.timestamp),
            )

        logger.info(f"Copying path {uri} into the store")
        stored = self._add(uri)
        store.pin_temporary(stored.path)
        entry = dedup.record_path(uri, stored.sha256, stored.path, now)

        return InputResult(
            uri=uri,
            store_path=stored.path,
            sha256hash=stored.sha256,
            revision=format_revision(entry.timestamp),
        )

    def _add(self, uri: str) -> StoreObject:
        store = self.context.store
        path = local_path(uri)
        if path is not None:
            return store.add_path(path, store_name(str(path)))

        try:
            response = self.client.get(uri, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise FetchError(f"Cannot download {uri}: {e}") from e
        return store.add_bytes(response.content, store_name(urlparse(uri).path or uri))
