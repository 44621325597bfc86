"""Shared test fixtures."""

from __future__ import annotations

import shlex
import shutil
import subprocess
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from agents_reverse.config import GenerationSettings, RetrySettings, Settings
from agents_reverse.storage.repository import StateRepository

ECHO_AGENT_MODULE = "agents_reverse.backend.echo_agent"


def echo_agent_command(*flags: str) -> str:
    """Shell-style command line running the bundled echo agent."""

    return shlex.join([sys.executable, "-m", ECHO_AGENT_MODULE, *flags])


def write_files(root: Path, files: dict[str, str]) -> None:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, "utf-8")


def git(root: Path, *args: str) -> str:
    result = subprocess.run(  # noqa: S603
        ["git", "-C", str(root), *args],  # noqa: S607
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Empty git repository with a committer identity configured."""

    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    root = tmp_path / "repo"
    root.mkdir()
    git(root, "init", "-q")
    git(root, "config", "user.email", "tests@example.com")
    git(root, "config", "user.name", "Tests")
    git(root, "config", "commit.gpgsign", "false")
    return root


@pytest.fixture()
def commit_all() -> Callable[[Path, str], str]:
    def _commit(root: Path, message: str = "change") -> str:
        git(root, "add", "-A")
        git(root, "commit", "-q", "-m", message)
        return git(root, "rev-parse", "HEAD").strip()

    return _commit


@pytest.fixture()
def make_settings() -> Callable[..., Settings]:
    """Settings pointed at ``root`` with the echo agent as backend."""

    def _make(root: Path, *flags: str, concurrency: int = 2) -> Settings:
        return Settings(
            root=root.resolve(),
            generation=GenerationSettings(
                backend="claude",
                command=echo_agent_command(*flags),
                timeout_seconds=30.0,
                grace_seconds=1.0,
                concurrency=concurrency,
            ),
            retry=RetrySettings(max_retries=0),
        )

    return _make


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[StateRepository]:
    repo = StateRepository(tmp_path / "state" / "state.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()
