"""Deterministic file discovery with an ordered exclusion filter chain."""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from agents_reverse.artifacts import is_generated_artifact_name
from agents_reverse.config import DiscoverySettings
from agents_reverse.git import GitError, ignored_paths, is_git_repository

logger = logging.getLogger(__name__)

_BINARY_SNIFF_BYTES = 8192


class DiscoveryError(RuntimeError):
    """The discovery root cannot be read."""


@dataclass(slots=True, frozen=True)
class ExcludedFile:
    """One path left out of analysis, with the filter that dropped it."""

    path: Path
    reason: str
    filter_name: str


@dataclass(slots=True)
class DiscoveryResult:
    """Included files (sorted, absolute) and exclusions for reporting."""

    root: Path
    included: list[Path] = field(default_factory=list)
    excluded: list[ExcludedFile] = field(default_factory=list)

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()


class FileFilter(Protocol):
    """One link of the filter chain."""

    name: str

    def exclusion_reason(self, path: Path, relative_path: str) -> str | None:
        """Return why the file is excluded, or ``None`` to pass it on."""


@dataclass(slots=True)
class GitignoreFilter:
    """Drop files matched by the repository's gitignore rules."""

    ignored: set[str]
    name: str = "gitignore"

    @classmethod
    def for_candidates(cls, root: Path, relative_paths: list[str]) -> GitignoreFilter:
        if not is_git_repository(root):
            return cls(ignored=set())
        try:
            return cls(ignored=ignored_paths(root, relative_paths))
        except GitError:
            logger.warning("gitignore check failed; continuing without it", exc_info=True)
            return cls(ignored=set())

    def exclusion_reason(self, path: Path, relative_path: str) -> str | None:
        if relative_path in self.ignored:
            return "matched .gitignore"
        return None


@dataclass(slots=True)
class VendorFilter:
    """Drop files located under vendored or tooling directories."""

    vendor_dirs: frozenset[str]
    name: str = "vendor"

    def exclusion_reason(self, path: Path, relative_path: str) -> str | None:
        for part in PurePosixPath(relative_path).parts[:-1]:
            if part in self.vendor_dirs:
                return f"inside vendor directory {part}"
        return None


@dataclass(slots=True)
class BinaryFilter:
    """Drop binary and oversized files."""

    binary_extensions: frozenset[str]
    max_file_size_bytes: int
    name: str = "binary"

    def exclusion_reason(self, path: Path, relative_path: str) -> str | None:
        if path.suffix.lower() in self.binary_extensions:
            return f"binary extension {path.suffix.lower()}"
        size = path.stat().st_size
        if size > self.max_file_size_bytes:
            return f"file too large ({size} bytes)"
        if is_binary_file(path):
            return "binary content"
        return None


@dataclass(slots=True)
class CustomFilter:
    """Drop files matching configured glob patterns."""

    patterns: tuple[str, ...]
    name: str = "custom"

    def exclusion_reason(self, path: Path, relative_path: str) -> str | None:
        for pattern in self.patterns:
            if fnmatch.fnmatch(relative_path, pattern) or fnmatch.fnmatch(path.name, pattern):
                return f"matched pattern {pattern}"
        return None


def discover_files(root: Path, settings: DiscoverySettings) -> DiscoveryResult:
    """Walk ``root`` and split files into included and excluded.

    Filters run in order (gitignore, vendor, binary, custom) and the first
    match wins. Per-file errors become exclusions; only an unreadable root
    raises ``DiscoveryError``.
    """

    resolved = root.resolve()
    if not resolved.is_dir():
        raise DiscoveryError(f"Discovery root is not a readable directory: {root}")
    try:
        os.listdir(resolved)
    except OSError as error:
        raise DiscoveryError(f"Discovery root is not readable: {root}: {error}") from error

    result = DiscoveryResult(root=resolved)
    vendor_dirs = frozenset(settings.vendor_dirs)
    candidates = _walk_candidates(resolved, vendor_dirs=vendor_dirs, result=result)

    filters = build_filter_chain(
        resolved,
        settings,
        relative_paths=[relative for _, relative in candidates],
    )
    for path, relative in candidates:
        excluded = _apply_filters(filters, path, relative)
        if excluded is None:
            result.included.append(path)
        else:
            result.excluded.append(excluded)

    logger.info(
        "Discovered %d files under %s (%d excluded)",
        len(result.included),
        resolved,
        len(result.excluded),
    )
    return result


def filter_relative_paths(
    root: Path,
    relative_paths: list[str],
    settings: DiscoverySettings,
) -> list[str]:
    """Keep the existing files among ``relative_paths`` that pass the filter chain."""

    existing = [
        relative
        for relative in relative_paths
        if not is_generated_artifact_name(PurePosixPath(relative).name)
        and (root / relative).is_file()
        and not (root / relative).is_symlink()
    ]
    filters = build_filter_chain(root, settings, relative_paths=existing)
    return [
        relative
        for relative in existing
        if _apply_filters(filters, root / relative, relative) is None
    ]


def build_filter_chain(
    root: Path,
    settings: DiscoverySettings,
    *,
    relative_paths: list[str],
) -> list[FileFilter]:
    """Ordered filters: gitignore, vendor, binary, custom."""

    filters: list[FileFilter] = []
    if settings.respect_gitignore:
        filters.append(GitignoreFilter.for_candidates(root, relative_paths))
    filters.extend(
        [
            VendorFilter(vendor_dirs=frozenset(settings.vendor_dirs)),
            BinaryFilter(
                binary_extensions=frozenset(ext.lower() for ext in settings.binary_extensions),
                max_file_size_bytes=settings.max_file_size_bytes,
            ),
            CustomFilter(patterns=settings.exclude_patterns),
        ],
    )
    return filters


def is_binary_file(path: Path) -> bool:
    """Return True when the first bytes contain a NUL byte."""

    with path.open("rb") as handle:
        return b"\0" in handle.read(_BINARY_SNIFF_BYTES)


def _apply_filters(filters: list[FileFilter], path: Path, relative: str) -> ExcludedFile | None:
    for file_filter in filters:
        try:
            reason = file_filter.exclusion_reason(path, relative)
        except OSError as error:
            return ExcludedFile(path=path, reason=f"unreadable: {error}", filter_name="discovery")
        if reason is not None:
            return ExcludedFile(path=path, reason=reason, filter_name=file_filter.name)
    return None


def _walk_candidates(
    root: Path,
    *,
    vendor_dirs: frozenset[str],
    result: DiscoveryResult,
) -> list[tuple[Path, str]]:
    candidates: list[tuple[Path, str]] = []

    def _on_error(error: OSError) -> None:
        failed = Path(error.filename) if error.filename else root
        result.excluded.append(
            ExcludedFile(
                path=failed,
                reason=f"unreadable: {error.strerror}",
                filter_name="discovery",
            ),
        )

    for current, dir_names, file_names in os.walk(root, onerror=_on_error):
        current_path = Path(current)
        kept_dirs = []
        for dir_name in sorted(dir_names):
            if dir_name in vendor_dirs:
                result.excluded.append(
                    ExcludedFile(
                        path=current_path / dir_name,
                        reason=f"vendor directory {dir_name}",
                        filter_name="vendor",
                    ),
                )
                continue
            if (current_path / dir_name).is_symlink():
                continue
            kept_dirs.append(dir_name)
        dir_names[:] = kept_dirs

        for file_name in sorted(file_names):
            if is_generated_artifact_name(file_name):
                continue
            path = current_path / file_name
            if path.is_symlink() or not path.is_file():
                continue
            candidates.append((path, path.relative_to(root).as_posix()))

    candidates.sort(key=lambda item: item[1])
    return candidates
