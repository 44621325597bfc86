"""Removal of artifacts whose sources no longer exist."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from agents_reverse.artifacts import (
    DIRECTORY_DOC_NAME,
    GENERATED_FILE_NAMES,
    SUM_SUFFIX,
    is_generated_artifact_name,
    is_generated_document,
    sum_path_for,
)
from agents_reverse.plan import ROOT_DIRECTORY

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CleanupResult:
    """Artifacts removed (or, on dry run, that would be removed)."""

    deleted_sum_files: list[Path] = field(default_factory=list)
    deleted_directory_docs: list[Path] = field(default_factory=list)
    deleted_state_dir: Path | None = None

    @property
    def total(self) -> int:
        return len(self.deleted_sum_files) + len(self.deleted_directory_docs)


def cleanup_orphans(
    root: Path,
    *,
    removed_paths: list[str],
    affected_directories: list[str],
    dry_run: bool = False,
) -> CleanupResult:
    """Delete ``.sum`` files of removed sources and empty directories' documents.

    ``removed_paths`` are deleted files and old sides of renames. A directory
    among ``affected_directories`` that has no source entries left loses its
    generated ``AGENTS.md``; hand-written documents are kept.
    """

    result = CleanupResult()
    for relative in removed_paths:
        sum_path = sum_path_for(root / relative)
        if not sum_path.exists():
            continue
        if not dry_run:
            sum_path.unlink()
        result.deleted_sum_files.append(sum_path)
        logger.info("Removed orphaned summary %s", sum_path)

    for relative_dir in affected_directories:
        if relative_dir == ROOT_DIRECTORY:
            continue
        directory = root / relative_dir
        doc = directory / DIRECTORY_DOC_NAME
        if not doc.exists() or has_source_entries(directory):
            continue
        if not is_generated_document(doc):
            logger.info("Keeping hand-written %s in empty directory", doc)
            continue
        if not dry_run:
            doc.unlink()
        result.deleted_directory_docs.append(doc)
        logger.info("Removed directory document of emptied directory %s", directory)
    return result


def has_source_entries(directory: Path) -> bool:
    """True when the directory holds anything besides hidden entries and artifacts."""

    if not directory.is_dir():
        return False
    for entry in directory.iterdir():
        if entry.name.startswith("."):
            continue
        if is_generated_artifact_name(entry.name):
            continue
        return True
    return False


def remove_generated_artifacts(
    root: Path,
    *,
    skip_dirs: tuple[str, ...],
    state_dir: Path | None = None,
    keep_state_files: tuple[str, ...] = (),
    dry_run: bool = False,
) -> CleanupResult:
    """Remove every ``.sum`` file and marker-tagged document under ``root``.

    The state directory is removed as well when given, except for the entries
    named in ``keep_state_files``. Documents without the generated marker are
    left in place.
    """

    result = CleanupResult()
    skipped = frozenset(skip_dirs)
    for current, dir_names, file_names in os.walk(root):
        dir_names[:] = sorted(name for name in dir_names if name not in skipped)
        for file_name in sorted(file_names):
            path = Path(current) / file_name
            if file_name.endswith(SUM_SUFFIX):
                result.deleted_sum_files.append(path)
            elif file_name in GENERATED_FILE_NAMES and is_generated_document(path):
                result.deleted_directory_docs.append(path)

    if not dry_run:
        for path in [*result.deleted_sum_files, *result.deleted_directory_docs]:
            path.unlink()
    if state_dir is not None and _has_removable_state(state_dir, keep=keep_state_files):
        if not dry_run:
            _clear_state_dir(state_dir, keep=keep_state_files)
        result.deleted_state_dir = state_dir
    logger.info(
        "Removed %d summaries and %d generated documents under %s",
        len(result.deleted_sum_files),
        len(result.deleted_directory_docs),
        root,
    )
    return result


def _has_removable_state(state_dir: Path, *, keep: tuple[str, ...]) -> bool:
    if not state_dir.is_dir():
        return False
    if not any((state_dir / name).exists() for name in keep):
        return True
    return any(entry.name not in keep for entry in state_dir.iterdir())


def _clear_state_dir(state_dir: Path, *, keep: tuple[str, ...]) -> None:
    if not any((state_dir / name).exists() for name in keep):
        shutil.rmtree(state_dir)
        return
    for entry in state_dir.iterdir():
        if entry.name in keep:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
