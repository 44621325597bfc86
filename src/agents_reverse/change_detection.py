"""Change detection against the last recorded run.

Version-control history says which paths changed; content fingerprints
decide whether a modified path actually needs a new summary. Nothing in this
module writes persisted state.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from agents_reverse.config import DiscoverySettings
from agents_reverse.discovery import filter_relative_paths
from agents_reverse.git import run_git
from agents_reverse.models import ChangeSet, ChangeStatus, FileChange, FileRecord
from agents_reverse.plan import ROOT_DIRECTORY, directory_depth

logger = logging.getLogger(__name__)

_HASH_CHUNK_BYTES = 1024 * 1024


class FileRecordReader(Protocol):
    """Read-only view of persisted file fingerprints."""

    def get_file(self, path: str) -> FileRecord | None:
        """Return the record for a relative path, if any."""


@dataclass(slots=True)
class IncrementalPlan:
    """Minimal redo set derived from a ChangeSet."""

    change_set: ChangeSet
    files_to_analyze: list[str] = field(default_factory=list)
    files_skipped: list[str] = field(default_factory=list)
    paths_to_cleanup: list[str] = field(default_factory=list)

    @property
    def has_work(self) -> bool:
        return bool(self.files_to_analyze or self.paths_to_cleanup)


def compute_content_hash(path: Path) -> str:
    """SHA-256 hex digest of the file bytes."""

    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def parse_name_status(output: str) -> list[FileChange]:
    """Parse ``git diff --name-status -M -z`` output.

    Copies count as additions of the new path and type changes as
    modifications.
    """

    fields = [item for item in output.split("\0") if item]
    changes: list[FileChange] = []
    index = 0
    while index < len(fields):
        status = fields[index]
        code = status[:1]
        if code in {"R", "C"}:
            if index + 2 >= len(fields):
                break
            old_path, new_path = fields[index + 1], fields[index + 2]
            index += 3
            if code == "R":
                changes.append(
                    FileChange(path=new_path, status=ChangeStatus.RENAMED, old_path=old_path),
                )
            else:
                changes.append(FileChange(path=new_path, status=ChangeStatus.ADDED))
            continue
        if index + 1 >= len(fields):
            break
        path = fields[index + 1]
        index += 2
        if code == "A":
            changes.append(FileChange(path=path, status=ChangeStatus.ADDED))
        elif code == "D":
            changes.append(FileChange(path=path, status=ChangeStatus.DELETED))
        elif code in {"M", "T"}:
            changes.append(FileChange(path=path, status=ChangeStatus.MODIFIED))
        else:
            logger.debug("Ignoring diff status %s for %s", status, path)
    return changes


def parse_porcelain_status(output: str) -> list[FileChange]:
    """Parse ``git status --porcelain=v1 -z`` output into working-tree changes."""

    fields = output.split("\0")
    changes: list[FileChange] = []
    index = 0
    while index < len(fields):
        entry = fields[index]
        index += 1
        if len(entry) < 4:
            continue
        status, path = entry[:2], entry[3:]
        if status == "??":
            changes.append(FileChange(path=path, status=ChangeStatus.ADDED))
            continue
        if status[0] in {"R", "C"}:
            old_path = fields[index] if index < len(fields) else None
            index += 1
            if status[0] == "R" and old_path:
                changes.append(
                    FileChange(path=path, status=ChangeStatus.RENAMED, old_path=old_path),
                )
            else:
                changes.append(FileChange(path=path, status=ChangeStatus.ADDED))
            continue
        if "D" in status:
            changes.append(FileChange(path=path, status=ChangeStatus.DELETED))
        elif "A" in status:
            changes.append(FileChange(path=path, status=ChangeStatus.ADDED))
        else:
            changes.append(FileChange(path=path, status=ChangeStatus.MODIFIED))
    return changes


def merge_changes(committed: list[FileChange], uncommitted: list[FileChange]) -> list[FileChange]:
    """Fold working-tree changes over committed ones, keyed by path.

    A path added in history and then edited in the working tree stays added.
    """

    merged: dict[str, FileChange] = {change.path: change for change in committed}
    for change in uncommitted:
        existing = merged.get(change.path)
        if (
            existing is not None
            and existing.status in {ChangeStatus.ADDED, ChangeStatus.RENAMED}
            and change.status is ChangeStatus.MODIFIED
        ):
            continue
        merged[change.path] = change
    return sorted(merged.values(), key=lambda change: change.path)


def collect_changes(
    root: Path,
    *,
    base_commit: str,
    include_uncommitted: bool = False,
) -> tuple[list[FileChange], str]:
    """Changes between ``base_commit`` and HEAD, plus the HEAD commit id."""

    head = run_git(root, ["rev-parse", "HEAD"]).strip()
    committed: list[FileChange] = []
    if base_commit != head:
        committed = parse_name_status(
            run_git(root, ["diff", "--name-status", "-M", "-z", base_commit, head]),
        )
    if not include_uncommitted:
        return committed, head
    uncommitted = parse_porcelain_status(
        run_git(root, ["status", "--porcelain=v1", "-z", "--untracked-files=all"]),
    )
    return merge_changes(committed, uncommitted), head


def affected_directories(paths: list[str]) -> list[str]:
    """Deduplicated ancestors of ``paths``, root included, deepest first."""

    directories: set[str] = set()
    for path in paths:
        for parent in PurePosixPath(path).parents:
            directories.add(parent.as_posix())
    directories.add(ROOT_DIRECTORY)
    return sorted(
        directories,
        key=lambda item: (item == ROOT_DIRECTORY, -directory_depth(item), item),
    )


def detect_changes(  # noqa: PLR0913
    root: Path,
    *,
    base_commit: str,
    records: FileRecordReader,
    discovery: DiscoverySettings,
    include_uncommitted: bool = False,
) -> IncrementalPlan:
    """Compute the ChangeSet and the files that must be summarized again.

    Modified files whose fingerprint matches the persisted one are skipped.
    Added files and rename targets are always analyzed; rename sources and
    deleted files are queued for artifact cleanup.
    """

    changes, head = collect_changes(
        root,
        base_commit=base_commit,
        include_uncommitted=include_uncommitted,
    )
    change_set = ChangeSet(
        base_commit=base_commit,
        head_commit=head,
        include_uncommitted=include_uncommitted,
    )
    candidates = [
        change.path for change in changes if change.status is not ChangeStatus.DELETED
    ]
    eligible = set(filter_relative_paths(root, candidates, discovery))

    plan = IncrementalPlan(change_set=change_set)
    for change in changes:
        if change.status is ChangeStatus.DELETED:
            change_set.deleted.append(change.path)
            plan.paths_to_cleanup.append(change.path)
            continue
        if change.status is ChangeStatus.RENAMED:
            change_set.renamed.append(change)
            if change.old_path:
                plan.paths_to_cleanup.append(change.old_path)
            if change.path in eligible:
                plan.files_to_analyze.append(change.path)
            continue
        if change.path not in eligible:
            continue
        if change.status is ChangeStatus.ADDED:
            change_set.added.append(change.path)
            plan.files_to_analyze.append(change.path)
            continue

        change_set.modified.append(change.path)
        record = records.get_file(change.path)
        current_hash = compute_content_hash(root / change.path)
        if record is not None and record.content_hash == current_hash:
            plan.files_skipped.append(change.path)
        else:
            plan.files_to_analyze.append(change.path)

    if plan.has_work:
        change_set.affected_directories = affected_directories(
            plan.files_to_analyze + plan.paths_to_cleanup,
        )
    logger.info(
        "Change detection %s..%s: %d to analyze, %d skipped, %d to clean up",
        base_commit[:8],
        head[:8],
        len(plan.files_to_analyze),
        len(plan.files_skipped),
        len(plan.paths_to_cleanup),
    )
    return plan
