"""Synchronous execution of external VCS commands."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from srcvault.errors import MirrorError

logger = logging.getLogger(__name__)

TIMEOUT_STATUS = 124


class ProcessRunner:
    """Run commands with a timeout and capture their output.

    Every failure, including a timeout or a missing binary, is reported as a
    non-zero return code rather than an exception.
    """

    def run(
        self,
        cmd: list[str],
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        logger.debug(f"Running {' '.join(cmd)} in {cwd or '.'}")
        try:
            return subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            return subprocess.CompletedProcess(
                cmd,
                TIMEOUT_STATUS,
                _text(e.stdout),
                f"{_text(e.stderr)}command timed out after {timeout}s",
            )
        except OSError as e:
            return subprocess.CompletedProcess(cmd, 127, "", str(e))

    def grab(
        self,
        cmd: list[str],
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> str:
        """Run a command and return its stripped stdout, raising on failure."""
        result = self.run(cmd, cwd=cwd, timeout=timeout)
        if result.returncode != 0:
            raise MirrorError(
                f"Command {' '.join(cmd)} failed with status {result.returncode}",
                command=cmd,
                stderr=result.stderr,
            )
        return result.stdout.strip()


def _text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
