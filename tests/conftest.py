"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import io
import shutil
import subprocess
import tarfile
import tempfile
import threading
import time
from collections import defaultdict
from pathlib import Path
from typing import Callable, Generator

import pytest

from srcvault.cache import DedupCache
from srcvault.locks import LocalLockManager
from srcvault.models.config import VaultConfig
from srcvault.resolvers.base import ResolverContext
from srcvault.runner import ProcessRunner
from srcvault.store import LocalContentStore

HEAD_SHA = "3f786850e387550fdab836ed7e6dc881de23001b"
OTHER_SHA = "89e6c98d92887913cadf06b2adb97f26cde4849b"

Handler = Callable[[list[str], "Path | None"], tuple[int, str, str]]


class FakeRunner(ProcessRunner):
    """Scripted stand-in for running git.

    Responses are matched by command prefix, most recently registered first.
    ``git init`` creates the target directory, ``git archive`` writes a small
    tarball and ``git clone`` creates a checkout, so mirrors and exports
    behave like real ones on disk.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[list[str], Path | None]] = []
        self._rules: list[tuple[tuple[str, ...], Handler]] = []
        self._lock = threading.Lock()
        self._active: dict[Path | None, int] = defaultdict(int)
        self.max_active: dict[Path | None, int] = defaultdict(int)

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        handler: Handler | None = None,
    ) -> None:
        if handler is None:
            result = (returncode, stdout, stderr)

            def respond(cmd, cwd):
                return result

            handler = respond

        self._rules.insert(0, (prefix, handler))

    def run(self, cmd, cwd=None, timeout=None):
        cwd = Path(cwd) if cwd is not None else None
        with self._lock:
            self.calls.append((list(cmd), cwd))
            self._active[cwd] += 1
            self.max_active[cwd] = max(self.max_active[cwd], self._active[cwd])
        try:
            if self.delay:
                time.sleep(self.delay)
            returncode, stdout, stderr = self._dispatch(list(cmd), cwd)
        finally:
            with self._lock:
                self._active[cwd] -= 1
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def _dispatch(self, cmd: list[str], cwd: Path | None) -> tuple[int, str, str]:
        for prefix, handler in self._rules:
            if tuple(cmd[: len(prefix)]) == prefix:
                return handler(cmd, cwd)
        if cmd[:2] == ["git", "init"]:
            Path(cmd[2]).mkdir(parents=True, exist_ok=True)
        elif cmd[:2] == ["git", "archive"]:
            _write_tarball(Path(cmd[cmd.index("-o") + 1]), f"{cmd[-1]}\n".encode())
        elif cmd[:2] == ["git", "clone"]:
            dest = Path(cmd[-1])
            (dest / ".git").mkdir(parents=True)
            (dest / "README").write_text(f"clone of {cmd[-2]}\n")
        return 0, "", ""

    def script_revision(
        self,
        ref: str = "master",
        revision: str = HEAD_SHA,
        rev_count: int = 42,
        tag: str = "v1.0-3-g3f78685",
    ) -> None:
        """Script the commands a mirror runs to resolve ``ref``."""
        self.on("git", "rev-parse", "--verify", f"{ref}^{{commit}}", stdout=f"{revision}\n")
        self.on("git", "rev-list", "--count", stdout=f"{rev_count}\n")
        self.on("git", "describe", "--always", stdout=f"{tag}\n")
        self.on("git", "rev-parse", "--short", stdout=f"{revision[:7]}\n")

    def git_commands(self) -> list[str]:
        """Git subcommands run so far, e.g. ``["init", "remote", "fetch"]``."""
        return [cmd[1] for cmd, _ in self.calls if cmd and cmd[0] == "git"]


def _write_tarball(path: Path, content: bytes) -> None:
    with tarfile.open(path, "w") as tar:
        info = tarfile.TarInfo("README")
        info.size = len(content)
        tar.addfile(info, io.BytesIO(content))


class GitRepoFactory:
    """Build small real git repositories for integration tests."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def git(self, repo: Path, *args: str) -> str:
        result = subprocess.run(
            [
                "git",
                "-c", "user.name=Test User",
                "-c", "user.email=test@example.org",
                "-c", "commit.gpgsign=false",
                *args,
            ],
            cwd=repo,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    def create(self, name: str, files: dict[str, str] | None = None) -> Path:
        repo = self.root / name
        repo.mkdir(parents=True)
        self.git(repo, "init", "--quiet")
        self.git(repo, "symbolic-ref", "HEAD", "refs/heads/master")
        self.commit(repo, files or {"README": f"{name}\n"}, message=f"Initial {name}")
        return repo

    def commit(self, repo: Path, files: dict[str, str], message: str = "Update") -> str:
        for rel, content in files.items():
            path = repo / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            self.git(repo, "add", rel)
        self.git(repo, "commit", "--quiet", "-m", message)
        return self.head(repo)

    def add_submodule(
        self,
        repo: Path,
        path: str,
        url: str,
        revision: str,
        name: str | None = None,
    ) -> str:
        """Declare a submodule in ``.gitmodules`` and pin it at ``revision``."""
        name = name or path
        with open(repo / ".gitmodules", "a") as f:
            f.write(f'[submodule "{name}"]\n\tpath = {path}\n\turl = {url}\n')
        self.git(repo, "update-index", "--add", "--cacheinfo", f"160000,{revision},{path}")
        self.git(repo, "add", ".gitmodules")
        self.git(repo, "commit", "--quiet", "-m", f"Add submodule {name}")
        return self.head(repo)

    def head(self, repo: Path) -> str:
        return self.git(repo, "rev-parse", "HEAD")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def vault_config(temp_dir: Path) -> VaultConfig:
    """Configuration with every directory inside the temp dir."""
    return VaultConfig(
        scm_cache_dir=temp_dir / "scm",
        store_dir=temp_dir / "store",
        database=temp_dir / "srcvault.db",
        lock_backend="local",
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def content_store(vault_config: VaultConfig) -> LocalContentStore:
    return LocalContentStore(vault_config.store_dir)


@pytest.fixture
def dedup_cache(vault_config: VaultConfig) -> DedupCache:
    return DedupCache(vault_config.database)


@pytest.fixture
def make_context(vault_config, content_store, dedup_cache):
    """Build resolver contexts sharing one store and database."""

    def factory(runner: ProcessRunner, config: VaultConfig | None = None) -> ResolverContext:
        return ResolverContext(
            config=config or vault_config,
            runner=runner,
            store=content_store,
            dedup=dedup_cache,
            locks=LocalLockManager(),
        )

    return factory


@pytest.fixture
def resolver_context(make_context, fake_runner) -> ResolverContext:
    """Resolver context backed by a scripted runner."""
    return make_context(fake_runner)


@pytest.fixture
def git_repos(temp_dir: Path) -> GitRepoFactory:
    """Factory for real git repositories; skips when git is unavailable."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return GitRepoFactory(temp_dir / "remotes")


# Markers for test categories
def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests running the real git binary")
    config.addinivalue_line("markers", "slow: slow running tests")
