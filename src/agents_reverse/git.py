"""Thin wrappers around the ``git`` CLI."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 60


class GitError(RuntimeError):
    """A git command failed or git is unavailable."""


def run_git(
    root: Path,
    args: list[str],
    *,
    stdin_text: str | None = None,
    ok_exit_codes: tuple[int, ...] = (0,),
) -> str:
    """Run ``git -C root ...`` and return stdout."""

    try:
        result = subprocess.run(  # noqa: S603
            ["git", "-C", str(root), *args],  # noqa: S607
            input=stdin_text,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            check=False,
        )
    except FileNotFoundError as error:
        raise GitError("git executable not found on PATH") from error
    except subprocess.TimeoutExpired as error:
        raise GitError(f"git {' '.join(args)} timed out") from error
    if result.returncode not in ok_exit_codes:
        raise GitError(
            f"git {' '.join(args)} failed with exit code {result.returncode}: "
            f"{result.stderr.strip()}",
        )
    return result.stdout


def is_git_repository(root: Path) -> bool:
    try:
        return run_git(root, ["rev-parse", "--is-inside-work-tree"]).strip() == "true"
    except GitError:
        return False


def current_commit(root: Path) -> str | None:
    """HEAD commit id, or ``None`` outside a repository or before the first commit."""

    try:
        return run_git(root, ["rev-parse", "HEAD"]).strip() or None
    except GitError:
        return None


def ignored_paths(root: Path, relative_paths: list[str]) -> set[str]:
    """Subset of ``relative_paths`` excluded by gitignore rules."""

    if not relative_paths:
        return set()
    output = run_git(
        root,
        ["check-ignore", "--stdin", "-z"],
        stdin_text="\0".join(relative_paths) + "\0",
        ok_exit_codes=(0, 1),
    )
    return {item for item in output.split("\0") if item}
