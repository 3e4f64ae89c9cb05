"""Local Git mirrors of remote repositories.

Each distinct URI gets one working copy under the SCM cache directory, named
by the sha256 of the URI. A mirror is created on first use and never removed
here. Every mutating method must be called while holding the mirror's lock
(see ``lock_key``).
"""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from srcvault.errors import MirrorError
from srcvault.models.config import DEFAULT_TIMEOUT
from srcvault.models.repo import CommitInfo, ResolvedRevision, is_commit_hash, validate_revision
from srcvault.runner import ProcessRunner

logger = logging.getLogger(__name__)

TMP_BRANCH = "_srcvault_tmp"
STACKED_BRANCH_MARKER = ".topgit"
GITMODULES = ".gitmodules"
GITLINK_MODE = "160000"

_SSH_URI = re.compile(r"^git@([^:]+):")
_HEX = re.compile(r"^[0-9a-fA-F]+$")


def uri_hash(uri: str) -> str:
    """Stable mirror identity for a URI."""
    return hashlib.sha256(uri.encode()).hexdigest()


@dataclass(frozen=True)
class SubmoduleEntry:
    """A ``.gitmodules`` declaration."""

    name: str
    path: str
    url: str


class RepositoryMirror:
    """A persistent local copy of one remote repository."""

    def __init__(
        self,
        uri: str,
        base_dir: Path,
        runner: ProcessRunner | None = None,
        ssh_fallback: bool = False,
    ) -> None:
        self.uri = uri
        self.fetch_uri = uri
        self.base_dir = base_dir
        self.path = base_dir / uri_hash(uri)
        self.runner = runner or ProcessRunner()
        self.ssh_fallback = ssh_fallback

    @property
    def lock_key(self) -> str:
        return f"{self.base_dir.name}-{self.path.name}"

    def exists(self) -> bool:
        return self.path.is_dir()

    def _git(
        self, *args: str, timeout: float | None = None
    ) -> subprocess.CompletedProcess[str]:
        return self.runner.run(["git", *args], cwd=self.path, timeout=timeout)

    def _grab(self, *args: str, timeout: float | None = None) -> str:
        return self.runner.grab(["git", *args], cwd=self.path, timeout=timeout)

    # Creation and update

    def ensure(self) -> None:
        """Create an empty repository with the URI as its only remote."""
        if self.exists():
            return
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Creating mirror of {self.uri} in {self.path}")
        res = self.runner.run(["git", "init", str(self.path)])
        if res.returncode == 0:
            res = self._git("remote", "add", "origin", "--", self.uri)
        if res.returncode != 0:
            # Leave no half-initialized mirror behind for the next caller.
            shutil.rmtree(self.path, ignore_errors=True)
            raise MirrorError(
                f"Error creating git repo in '{self.path}'", command=res.args, stderr=res.stderr
            )

    def update_ref(self, ref: str, timeout: int = DEFAULT_TIMEOUT) -> None:
        """Force the local copy of ``ref`` to match the remote tip.

        Fetches exactly ``ref`` into a local branch of the same name (or a
        throwaway branch for commit ids), discarding local divergence. Some
        hosts reject scoped fetches, so a failure is retried once with an
        unscoped fetch before giving up.

        With ``ssh_fallback`` an SSH URI whose key is rejected is rewritten to
        HTTPS; ``fetch_uri`` then names the URI the remote really points at.
        """
        local_branch = TMP_BRANCH if is_commit_hash(ref) else ref
        res = self._git("fetch", "-fu", "origin", f"+{ref}:{local_branch}", timeout=timeout)
        if res.returncode != 0:
            logger.debug(f"Scoped fetch of {ref} from {self.uri} failed, fetching all refs")
            res = self._git("fetch", "-fu", "origin", timeout=timeout)
        if res.returncode != 0 and self._should_retry_over_https(res.stderr):
            res = self._git("fetch", "-fu", "origin", timeout=timeout)
        if res.returncode != 0:
            raise MirrorError(
                f"Error fetching latest change from git repo at '{self.uri}'",
                command=res.args,
                stderr=res.stderr,
            )
        if self.ssh_fallback and _SSH_URI.match(self.uri):
            remote = self._git("remote", "get-url", "origin").stdout.strip()
            self.fetch_uri = remote or self.fetch_uri

    def _should_retry_over_https(self, stderr: str) -> bool:
        """Point the remote at HTTPS after an SSH key rejection."""
        if not self.ssh_fallback or "Permission denied (publickey)" not in stderr:
            return False
        if not _SSH_URI.match(self.uri):
            return False
        https_uri = _SSH_URI.sub(r"https://\1/", self.uri)
        logger.info(f"SSH access to {self.uri} denied, retrying with {https_uri}")
        res = self._git("remote", "set-url", "origin", https_uri)
        if res.returncode != 0:
            return False
        self.fetch_uri = https_uri
        return True

    def checkout(self, ref: str) -> None:
        """Check out ``ref``, creating it from ``origin/<ref>`` if needed."""
        res = self._git("checkout", "--force", ref)
        if res.returncode != 0 and not is_commit_hash(ref):
            res = self._git("checkout", "--force", "-B", ref, f"origin/{ref}")
        if res.returncode != 0:
            raise MirrorError(
                f"Error checking out {ref} in {self.path}", command=res.args, stderr=res.stderr
            )

    def populate_stacked_branches(self, ref: str, timeout: int = DEFAULT_TIMEOUT) -> bool:
        """Fetch all topic branches if ``ref`` uses the stacked-branch layout.

        Returns True when topic branches were populated. A failing ``tg``
        only logs a warning.
        """
        res = self._git("ls-tree", "-r", ref, STACKED_BRANCH_MARKER)
        if res.returncode != 0 or not res.stdout.strip():
            return False

        self.checkout(ref)
        res = self.runner.run(
            ["tg", "remote", "--populate", "origin"], cwd=self.path, timeout=timeout
        )
        if res.returncode != 0:
            logger.warning(f"'tg remote --populate origin' failed:\n{res.stderr}")
            return False
        return True

    # Revisions

    def resolve(self, ref: str) -> ResolvedRevision:
        """Resolve ``ref`` to a full commit id plus display metadata.

        A full commit id is used as is. Any other ref, including hex-looking
        tags and branches, goes through ``rev-parse`` and only the output has
        to be a full commit id.
        """
        if is_commit_hash(ref):
            revision = ref
        else:
            revision = self._grab("rev-parse", "--verify", f"{ref}^{{commit}}")
        validate_revision(revision, ref=ref, uri=self.uri)

        rev_count = self._grab("rev-list", "--count", revision)
        tag = self._grab("describe", "--always", revision)
        short_rev = self._grab("rev-parse", "--short", revision)
        return ResolvedRevision(
            revision=revision,
            rev_count=int(rev_count),
            tag=tag,
            short_rev=short_rev,
        )

    def export(
        self,
        revision: str,
        dest: Path,
        deep_clone: bool = False,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> Path:
        """Write the tree of ``revision`` to ``dest``.

        Without deep clone the result has no ``.git``; with it, the full
        history is kept so ``git describe`` works inside the checkout.
        """
        if deep_clone:
            res = self.runner.run(
                ["git", "clone", "--quiet", "--no-checkout", str(self.path), str(dest)],
                timeout=timeout,
            )
            if res.returncode == 0:
                res = self.runner.run(
                    ["git", "checkout", "--quiet", revision], cwd=dest, timeout=timeout
                )
            if res.returncode != 0:
                raise MirrorError(
                    f"Error cloning {self.uri} at {revision}", command=res.args, stderr=res.stderr
                )
            return dest

        dest.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory() as tmp_dir:
            archive = Path(tmp_dir) / "source.tar"
            self._grab("archive", "--format=tar", "-o", str(archive), revision, timeout=timeout)
            with tarfile.open(archive) as tar:
                tar.extractall(dest, filter="tar")
        return dest

    def commits_between(self, rev1: str, rev2: str) -> list[CommitInfo]:
        """Commits reachable from ``rev2`` but not ``rev1``, newest first."""
        if not self.exists():
            logger.debug(f"No mirror of {self.uri}, no commits to report")
            return []
        out = self._grab("log", "--pretty=format:%H%x09%an%x09%ae%x09%at", f"{rev1}..{rev2}")

        commits: list[CommitInfo] = []
        for line in out.splitlines():
            fields = line.split("\t")
            if len(fields) < 3:
                continue
            revision, author, email = fields[:3]
            timestamp = None
            if len(fields) > 3 and fields[3].isdigit():
                timestamp = datetime.fromtimestamp(int(fields[3]), tz=timezone.utc)
            commits.append(
                CommitInfo(revision=revision, author=author, email=email, timestamp=timestamp)
            )
        return commits

    # Submodules

    def has_submodules(self) -> bool:
        return (self.path / GITMODULES).is_file()

    def submodule_entries(self) -> list[SubmoduleEntry]:
        """Declarations from the checked-out ``.gitmodules``, in file order."""
        if not self.has_submodules():
            return []
        res = self._git("config", "--file", GITMODULES, "--get-regexp", r"^submodule\.")
        # Status 1 means no matching keys.
        if res.returncode == 1:
            return []
        if res.returncode != 0:
            raise MirrorError(
                f"Error reading {GITMODULES} of {self.uri}", command=res.args, stderr=res.stderr
            )

        names: list[str] = []
        values: dict[str, dict[str, str]] = {}
        for line in res.stdout.splitlines():
            key, _, value = line.partition(" ")
            section, _, attr = key.rpartition(".")
            name = section[len("submodule."):]
            if not name or attr not in ("path", "url"):
                continue
            if name not in values:
                names.append(name)
                values[name] = {}
            values[name][attr] = value.strip()

        return [
            SubmoduleEntry(name=name, path=values[name]["path"], url=values[name]["url"])
            for name in names
            if "path" in values[name] and "url" in values[name]
        ]

    def submodule_commits(self) -> dict[str, str]:
        """Pinned commit of every submodule path in the checked-out index."""
        out = self._grab("ls-files", "--stage", "-z")
        commits: dict[str, str] = {}
        for record in out.split("\0"):
            if not record:
                continue
            meta, _, path = record.partition("\t")
            fields = meta.split()
            if len(fields) >= 2 and fields[0] == GITLINK_MODE and _HEX.match(fields[1]):
                commits[path] = fields[1]
        return commits
