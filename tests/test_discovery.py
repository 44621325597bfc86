from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import allure
import pytest

from agents_reverse.config import DiscoverySettings
from agents_reverse.discovery import (
    DiscoveryError,
    discover_files,
    filter_relative_paths,
    is_binary_file,
)
from conftest import write_files

pytestmark = [
    allure.epic("Documentation Pipeline"),
    allure.feature("Discovery"),
]


def _included(result) -> list[str]:
    return [result.relative(path) for path in result.included]


def _excluded_by(result, filter_name: str) -> list[str]:
    return sorted(
        result.relative(item.path) for item in result.excluded if item.filter_name == filter_name
    )


def test_included_files_are_sorted_and_artifacts_skipped(tmp_path: Path) -> None:
    write_files(
        tmp_path,
        {
            "src/b.py": "B = 1\n",
            "src/a.py": "A = 1\n",
            "src/a.py.sum": "summary",
            "src/AGENTS.md": "doc",
            "README.md": "# Readme\n",
            "CLAUDE.md": "pointer",
        },
    )

    result = discover_files(tmp_path, DiscoverySettings(respect_gitignore=False))

    assert _included(result) == ["README.md", "src/a.py", "src/b.py"]
    assert result.root == tmp_path.resolve()


def test_vendor_binary_and_custom_filters(tmp_path: Path) -> None:
    write_files(
        tmp_path,
        {
            "app.py": "APP = 1\n",
            "node_modules/pkg/index.js": "x",
            "vendor/lib.go": "package lib\n",
            "poetry.lock": "lock",
            "notes.snap": "snapshot",
        },
    )
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\r\n")
    (tmp_path / "blob.dat").write_bytes(b"abc\0def")
    settings = replace(
        DiscoverySettings(respect_gitignore=False),
        exclude_patterns=(*DiscoverySettings().exclude_patterns, "*.snap"),
    )

    result = discover_files(tmp_path, settings)

    assert _included(result) == ["app.py"]
    assert _excluded_by(result, "vendor") == ["node_modules", "vendor"]
    assert _excluded_by(result, "binary") == ["blob.dat", "logo.png"]
    assert _excluded_by(result, "custom") == ["notes.snap", "poetry.lock"]


def test_oversized_files_are_excluded(tmp_path: Path) -> None:
    write_files(tmp_path, {"big.txt": "x" * 200, "small.txt": "x"})

    result = discover_files(
        tmp_path,
        DiscoverySettings(respect_gitignore=False, max_file_size_bytes=100),
    )

    assert _included(result) == ["small.txt"]
    assert [item.reason for item in result.excluded] == ["file too large (200 bytes)"]


def test_gitignore_rules_apply_in_a_repository(
    git_repo: Path,
    commit_all: Callable[[Path, str], str],
) -> None:
    write_files(
        git_repo,
        {
            ".gitignore": "generated/\n*.tmp\n",
            "main.py": "print(1)\n",
            "generated/out.py": "OUT = 1\n",
            "scratch.tmp": "tmp",
        },
    )
    commit_all(git_repo, "init")

    result = discover_files(git_repo, DiscoverySettings())

    assert _included(result) == ["main.py"]
    assert _excluded_by(result, "gitignore") == ["generated/out.py", "scratch.tmp"]
    assert _excluded_by(result, "custom") == [".gitignore"]


def test_filter_relative_paths_drops_missing_and_artifacts(tmp_path: Path) -> None:
    write_files(tmp_path, {"a.py": "A = 1\n", "a.py.sum": "s", "dist/b.js": "b"})

    kept = filter_relative_paths(
        tmp_path,
        ["a.py", "a.py.sum", "dist/b.js", "missing.py"],
        DiscoverySettings(respect_gitignore=False),
    )

    assert kept == ["a.py"]


def test_unreadable_root_raises(tmp_path: Path) -> None:
    with pytest.raises(DiscoveryError):
        discover_files(tmp_path / "missing", DiscoverySettings())


def test_is_binary_file_sniffs_nul_bytes(tmp_path: Path) -> None:
    text = tmp_path / "t.txt"
    text.write_text("plain", "utf-8")
    binary = tmp_path / "b.bin"
    binary.write_bytes(b"\0\1\2")

    assert is_binary_file(text) is False
    assert is_binary_file(binary) is True
