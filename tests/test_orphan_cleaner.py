from __future__ import annotations

from pathlib import Path

import allure

from agents_reverse.artifacts import write_directory_doc
from agents_reverse.orphan_cleaner import (
    cleanup_orphans,
    has_source_entries,
    remove_generated_artifacts,
)
from conftest import write_files

pytestmark = [
    allure.epic("Incremental Updates"),
    allure.feature("Orphan Cleanup"),
]


def test_sum_of_deleted_source_is_removed(tmp_path: Path) -> None:
    write_files(tmp_path, {"pkg/keep.py": "K = 1\n", "pkg/keep.py.sum": "s", "pkg/gone.py.sum": "s"})

    result = cleanup_orphans(
        tmp_path,
        removed_paths=["pkg/gone.py", "pkg/never-summarized.py"],
        affected_directories=["pkg", "."],
    )

    assert result.deleted_sum_files == [tmp_path / "pkg" / "gone.py.sum"]
    assert not (tmp_path / "pkg" / "gone.py.sum").exists()
    assert (tmp_path / "pkg" / "keep.py.sum").exists()
    assert result.deleted_directory_docs == []


def test_emptied_directory_loses_generated_doc(tmp_path: Path) -> None:
    write_files(tmp_path, {"old/only.py.sum": "s", ".hidden/x": ""})
    write_directory_doc(tmp_path / "old", "generated")
    write_directory_doc(tmp_path, "root doc")

    result = cleanup_orphans(
        tmp_path,
        removed_paths=["old/only.py"],
        affected_directories=["old", "."],
    )

    assert result.total == 2
    assert result.deleted_directory_docs == [tmp_path / "old" / "AGENTS.md"]
    assert (tmp_path / "AGENTS.md").exists()


def test_hand_written_doc_in_emptied_directory_is_preserved(tmp_path: Path) -> None:
    write_files(tmp_path, {"old/AGENTS.md": "# Written by a person\n"})

    result = cleanup_orphans(tmp_path, removed_paths=["old/x.py"], affected_directories=["old"])

    assert result.total == 0
    assert (tmp_path / "old" / "AGENTS.md").read_text("utf-8") == "# Written by a person\n"


def test_dry_run_reports_without_deleting(tmp_path: Path) -> None:
    write_files(tmp_path, {"a.py.sum": "s"})

    result = cleanup_orphans(tmp_path, removed_paths=["a.py"], affected_directories=["."], dry_run=True)

    assert result.deleted_sum_files == [tmp_path / "a.py.sum"]
    assert (tmp_path / "a.py.sum").exists()


def test_has_source_entries_ignores_artifacts_and_hidden_entries(tmp_path: Path) -> None:
    write_files(tmp_path, {"d/x.py.sum": "s", "d/CLAUDE.md": "c", "d/.cache": ""})

    assert has_source_entries(tmp_path / "d") is False
    assert has_source_entries(tmp_path / "missing") is False
    (tmp_path / "d" / "x.py").write_text("X = 1\n", "utf-8")
    assert has_source_entries(tmp_path / "d") is True


def test_remove_generated_artifacts_keeps_hand_written_docs(tmp_path: Path) -> None:
    write_files(
        tmp_path,
        {
            "a.py": "A = 1\n",
            "a.py.sum": "s",
            "pkg/b.py.sum": "s",
            "pkg/AGENTS.local.md": "# notes\n",
            "docs/AGENTS.md": "# Hand-written\n",
            "node_modules/dep/index.js.sum": "s",
            ".agents-reverse/state.db": "",
        },
    )
    write_directory_doc(tmp_path / "pkg", "generated")
    write_directory_doc(tmp_path, "root")
    state_dir = tmp_path / ".agents-reverse"

    result = remove_generated_artifacts(
        tmp_path,
        skip_dirs=("node_modules", ".agents-reverse"),
        state_dir=state_dir,
    )

    assert sorted(result.deleted_sum_files) == [tmp_path / "a.py.sum", tmp_path / "pkg" / "b.py.sum"]
    assert sorted(result.deleted_directory_docs) == [
        tmp_path / "AGENTS.md",
        tmp_path / "pkg" / "AGENTS.md",
    ]
    assert result.deleted_state_dir == state_dir
    assert not state_dir.exists()
    assert (tmp_path / "a.py").exists()
    assert (tmp_path / "pkg" / "AGENTS.local.md").exists()
    assert (tmp_path / "docs" / "AGENTS.md").exists()
    assert (tmp_path / "node_modules" / "dep" / "index.js.sum").exists()


def test_remove_generated_artifacts_dry_run_leaves_tree_alone(tmp_path: Path) -> None:
    write_files(tmp_path, {"a.py.sum": "s", ".agents-reverse/state.db": ""})
    state_dir = tmp_path / ".agents-reverse"

    result = remove_generated_artifacts(tmp_path, skip_dirs=(), state_dir=state_dir, dry_run=True)

    assert result.deleted_sum_files == [tmp_path / "a.py.sum"]
    assert result.deleted_state_dir == state_dir
    assert (tmp_path / "a.py.sum").exists()
    assert state_dir.is_dir()


def test_remove_generated_artifacts_keeps_project_config(tmp_path: Path) -> None:
    write_files(
        tmp_path,
        {
            ".agents-reverse/state.db": "",
            ".agents-reverse/traces/run.ndjson": "{}\n",
            ".agents-reverse/config.yaml": "ai:\n  model: opus\n",
        },
    )
    state_dir = tmp_path / ".agents-reverse"

    result = remove_generated_artifacts(
        tmp_path,
        skip_dirs=(".agents-reverse",),
        state_dir=state_dir,
        keep_state_files=("config.yaml",),
    )

    assert result.deleted_state_dir == state_dir
    assert sorted(entry.name for entry in state_dir.iterdir()) == ["config.yaml"]


def test_state_dir_holding_only_project_config_is_not_reported(tmp_path: Path) -> None:
    write_files(tmp_path, {".agents-reverse/config.yaml": "ai:\n  model: opus\n"})
    state_dir = tmp_path / ".agents-reverse"

    result = remove_generated_artifacts(
        tmp_path,
        skip_dirs=(".agents-reverse",),
        state_dir=state_dir,
        keep_state_files=("config.yaml",),
    )

    assert result.deleted_state_dir is None
    assert result.total == 0
    assert (state_dir / "config.yaml").exists()
