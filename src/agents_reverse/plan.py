"""Three-phase execution plan: files, depth-batched directories, root."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from agents_reverse.artifacts import (
    ARCHITECTURE_DOC_NAME,
    DIRECTORY_DOC_NAME,
    read_sum_file,
    sum_path_for,
)

logger = logging.getLogger(__name__)

ROOT_DIRECTORY = "."

_CATEGORY_BY_SUFFIX = {
    ".py": "python",
    ".pyi": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".rb": "ruby",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".sh": "shell",
    ".sql": "sql",
    ".md": "markdown",
    ".rst": "markdown",
    ".json": "config",
    ".toml": "config",
    ".yaml": "config",
    ".yml": "config",
    ".ini": "config",
    ".cfg": "config",
    ".html": "markup",
    ".css": "style",
    ".scss": "style",
}


class PlanConstructionError(RuntimeError):
    """The file tree cannot be turned into a valid plan."""


@dataclass(slots=True, frozen=True)
class FileTask:
    """One file pending per-file summary generation."""

    path: Path
    relative_path: str
    category: str
    output_path: Path
    prior_summary: str | None = None

    @property
    def task_id(self) -> str:
        return f"file:{self.relative_path}"


@dataclass(slots=True, frozen=True)
class DirectoryTask:
    """One directory pending aggregation of its children's artifacts."""

    path: Path
    relative_path: str
    depth: int
    child_artifacts: tuple[Path, ...]
    output_path: Path

    @property
    def task_id(self) -> str:
        return f"dir:{self.relative_path}"


@dataclass(slots=True, frozen=True)
class RootTask:
    """One root-level document reading from every directory artifact."""

    name: str
    output_path: Path
    source_artifacts: tuple[Path, ...]

    @property
    def task_id(self) -> str:
        return f"root:{self.name}"


@dataclass(slots=True)
class ExecutionPlan:
    """File phase, then deepest-first directory batches, then root phase."""

    root: Path
    file_tasks: list[FileTask] = field(default_factory=list)
    directory_batches: list[list[DirectoryTask]] = field(default_factory=list)
    root_tasks: list[RootTask] = field(default_factory=list)

    @property
    def directory_tasks(self) -> list[DirectoryTask]:
        return [task for batch in self.directory_batches for task in batch]

    @property
    def is_empty(self) -> bool:
        return not (self.file_tasks or self.directory_batches or self.root_tasks)

    @property
    def task_count(self) -> int:
        return len(self.file_tasks) + len(self.directory_tasks) + len(self.root_tasks)

    def ordered_task_ids(self) -> list[str]:
        return [
            *(task.task_id for task in self.file_tasks),
            *(task.task_id for task in self.directory_tasks),
            *(task.task_id for task in self.root_tasks),
        ]

    def render_markdown(self) -> str:
        """Human-readable listing of the plan, one section per phase."""

        lines = [
            "# Generation Plan",
            "",
            f"Root: `{self.root}`",
            f"Tasks: {self.task_count} "
            f"({len(self.file_tasks)} files, {len(self.directory_tasks)} directories, "
            f"{len(self.root_tasks)} root documents)",
            "",
            "## Phase 1: File Summaries",
            "",
        ]
        lines.extend(f"- [ ] `{task.relative_path}` ({task.category})" for task in self.file_tasks)
        lines.extend(["", "## Phase 2: Directory Documents", ""])
        for batch in self.directory_batches:
            lines.append(f"### Depth {batch[0].depth}")
            lines.extend(f"- [ ] `{task.relative_path}/{DIRECTORY_DOC_NAME}`" for task in batch)
            lines.append("")
        lines.extend(["## Phase 3: Root Documents", ""])
        lines.extend(f"- [ ] `{task.name}`" for task in self.root_tasks)
        return "\n".join(lines).rstrip() + "\n"


def build_execution_plan(
    paths: list[Path],
    root: Path,
    *,
    include_architecture: bool = False,
    read_prior_summaries: bool = True,
) -> ExecutionPlan:
    """Turn a flat list of included files into a dependency-ordered plan.

    Every ancestor directory of every file (excluding the root itself) gets
    one task; the root is always handled by the separate root phase. An empty
    file list yields an empty plan.
    """

    resolved_root = root.resolve()
    if not resolved_root.is_dir():
        raise PlanConstructionError(f"Plan root is not a directory: {root}")

    plan = ExecutionPlan(root=resolved_root)
    if not paths:
        return plan

    relative_files: list[str] = []
    seen: set[str] = set()
    for path in paths:
        relative = _relative_posix(path, resolved_root)
        if relative in seen:
            continue
        seen.add(relative)
        relative_files.append(relative)

    for relative in relative_files:
        absolute = resolved_root / relative
        prior = read_sum_file(absolute) if read_prior_summaries else None
        plan.file_tasks.append(
            FileTask(
                path=absolute,
                relative_path=relative,
                category=categorize(relative),
                output_path=sum_path_for(absolute),
                prior_summary=prior.summary if prior is not None else None,
            ),
        )

    plan.directory_batches = _build_directory_batches(resolved_root, relative_files)
    _assert_depth_monotonic(plan.directory_batches)

    plan.root_tasks = build_root_tasks(
        resolved_root,
        [task.output_path for task in plan.directory_tasks]
        + [
            task.output_path
            for task in plan.file_tasks
            if parent_directory(task.relative_path) == ROOT_DIRECTORY
        ],
        include_architecture=include_architecture,
    )
    logger.debug(
        "Built plan: %d files, %d directory batches, %d root tasks",
        len(plan.file_tasks),
        len(plan.directory_batches),
        len(plan.root_tasks),
    )
    return plan


def build_directory_batches(
    root: Path,
    directories: set[str],
    files: list[str],
) -> list[list[DirectoryTask]]:
    """Depth-descending batches for ``directories``.

    ``files`` is every included file of the tree; child artifacts of a
    directory are derived from it, so unchanged siblings are still read.
    """

    child_files: dict[str, list[str]] = defaultdict(list)
    for relative in files:
        child_files[parent_directory(relative)].append(relative)
    known_directories = directories | {
        ancestor for relative in files for ancestor in ancestor_directories(relative)
    }
    child_dirs: dict[str, list[str]] = defaultdict(list)
    for directory in known_directories:
        child_dirs[parent_directory(directory)].append(directory)

    by_depth: dict[int, list[DirectoryTask]] = defaultdict(list)
    for directory in sorted(directories):
        if directory == ROOT_DIRECTORY:
            continue
        absolute = root / directory
        artifacts = [sum_path_for(root / name) for name in sorted(child_files[directory])]
        artifacts.extend(
            root / child / DIRECTORY_DOC_NAME for child in sorted(child_dirs[directory])
        )
        depth = directory_depth(directory)
        by_depth[depth].append(
            DirectoryTask(
                path=absolute,
                relative_path=directory,
                depth=depth,
                child_artifacts=tuple(artifacts),
                output_path=absolute / DIRECTORY_DOC_NAME,
            ),
        )
    return [by_depth[depth] for depth in sorted(by_depth, reverse=True)]


def build_root_tasks(
    root: Path,
    source_artifacts: list[Path],
    *,
    include_architecture: bool = False,
) -> list[RootTask]:
    sources = tuple(source_artifacts)
    tasks = [
        RootTask(
            name=DIRECTORY_DOC_NAME,
            output_path=root / DIRECTORY_DOC_NAME,
            source_artifacts=sources,
        ),
    ]
    if include_architecture:
        tasks.append(
            RootTask(
                name=ARCHITECTURE_DOC_NAME,
                output_path=root / ARCHITECTURE_DOC_NAME,
                source_artifacts=sources,
            ),
        )
    return tasks


def ancestor_directories(relative_path: str) -> list[str]:
    """Ancestors of a relative path, nearest first, excluding the root."""

    parents = PurePosixPath(relative_path).parents
    return [parent.as_posix() for parent in parents if parent.as_posix() != ROOT_DIRECTORY]


def parent_directory(relative_path: str) -> str:
    return PurePosixPath(relative_path).parent.as_posix()


def directory_depth(relative_directory: str) -> int:
    """Number of path separators, so `b` is 0 and `b/d` is 1."""

    if relative_directory in ("", ROOT_DIRECTORY):
        return 0
    return len(PurePosixPath(relative_directory).parts) - 1


def categorize(relative_path: str) -> str:
    return _CATEGORY_BY_SUFFIX.get(PurePosixPath(relative_path).suffix.lower(), "generic")


def _build_directory_batches(root: Path, relative_files: list[str]) -> list[list[DirectoryTask]]:
    directories = {
        ancestor for relative in relative_files for ancestor in ancestor_directories(relative)
    }
    return build_directory_batches(root, directories, relative_files)


def _relative_posix(path: Path, root: Path) -> str:
    absolute = path if path.is_absolute() else root / path
    try:
        relative = absolute.resolve().relative_to(root)
    except ValueError as error:
        raise PlanConstructionError(f"Path {path} is outside of root {root}") from error
    if not relative.parts:
        raise PlanConstructionError(f"Root directory itself cannot be a file task: {path}")
    return relative.as_posix()


def _assert_depth_monotonic(batches: list[list[DirectoryTask]]) -> None:
    previous_depth: int | None = None
    for batch in batches:
        depths = {task.depth for task in batch}
        if len(depths) != 1:
            raise PlanConstructionError(f"Directory batch mixes depths: {sorted(depths)}")
        depth = depths.pop()
        if previous_depth is not None and depth >= previous_depth:
            raise PlanConstructionError(
                f"Directory batches are not depth-descending: {depth} after {previous_depth}",
            )
        previous_depth = depth
