"""
WARDEN Git Runner

Thin wrapper over the git CLI for the few commands the autonomy loop needs:
checkout + no-fast-forward merge, and `git log --since` queries for impact
assessment.

A working tree can only have one checkout in flight, so every mutation
of a repository runs under repo_lock(path): one lock per resolved path
for the life of the process.
"""

from __future__ import annotations

import re
import subprocess
import threading
from collections import defaultdict
from pathlib import Path

from loguru import logger


class GitError(Exception):
    pass


_repo_locks: dict[Path, threading.Lock] = defaultdict(threading.Lock)
_repo_locks_guard = threading.Lock()


def repo_lock(repo_path: Path) -> threading.Lock:
    """The process-wide lock guarding one working tree."""
    with _repo_locks_guard:
        return _repo_locks[Path(repo_path).resolve()]


_BRE_SPECIAL = re.compile(r"([.\[\]*^$\\])")


def bre_escape(text: str) -> str:
    """Escape text for use inside a git --grep basic regular expression."""
    return _BRE_SPECIAL.sub(r"\\\1", text)


class GitRunner:
    """Runs git commands in one repository."""

    def __init__(self, repo_path: Path, timeout: int = 60):
        self.repo_path = Path(repo_path).resolve()
        self.timeout = timeout

    def checkout(self, branch: str) -> None:
        self._git("checkout", branch)

    def merge_no_ff(self, source_branch: str) -> None:
        self._git("merge", "--no-ff", "--no-edit", source_branch)

    def merge_into(self, source_branch: str, target_branch: str) -> None:
        """Check out target and merge source into it with a merge commit."""
        with repo_lock(self.repo_path):
            self.checkout(target_branch)
            self.merge_no_ff(source_branch)
        logger.info(f"[GIT] Merged {source_branch} into {target_branch} in {self.repo_path.name}")

    def log_since(self, since: str, grep: str | None = None, paths: list[str] | None = None) -> list[str]:
        """One-line log entries since a timestamp, optionally filtered by message or paths."""
        args = ["log", f"--since={since}", "--oneline"]
        if grep:
            args += ["--grep", grep]
        if paths:
            args += ["--", *paths]
        output = self._git(*args, capture=True)
        return [line.strip() for line in output.splitlines() if line.strip()]

    def _git(self, *args: str, check: bool = True, capture: bool = False) -> str:
        return self._run_cmd(["git", *args], cwd=self.repo_path, check=check, capture=capture, timeout=self.timeout)

    @staticmethod
    def _run_cmd(cmd: list[str], cwd: Path, check: bool = True, capture: bool = False, timeout: int = 60) -> str:
        try:
            result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise GitError(f"Git timed out after {timeout}s: {' '.join(cmd)}") from e
        except OSError as e:
            raise GitError(f"Git could not run in {cwd}: {e}") from e
        if check and result.returncode != 0:
            raise GitError(f"Git failed: {' '.join(cmd)}\n{result.stderr.strip()}")
        return result.stdout if capture else ""
