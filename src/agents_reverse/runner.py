"""PipelineRunner: coordinator for the three-phase documentation pipeline."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from agents_reverse.artifacts import (
    DIRECTORY_DOC_NAME,
    LOCAL_DOC_NAME,
    SUM_SUFFIX,
    SumFile,
    WriteOutcome,
    read_generated_body,
    read_local_notes,
    read_sum_file,
    sum_path_for,
    write_directory_doc,
    write_generated_document,
    write_root_pointer,
    write_sum_file,
)
from agents_reverse.change_detection import (
    IncrementalPlan,
    affected_directories,
    compute_content_hash,
    detect_changes,
)
from agents_reverse.config import Settings
from agents_reverse.discovery import discover_files
from agents_reverse.git import GitError, current_commit, is_git_repository
from agents_reverse.models import (
    FailureKind,
    FileRecord,
    GenerationFailure,
    GenerationResult,
    RunOutcome,
    RunRecord,
)
from agents_reverse.orphan_cleaner import CleanupResult, cleanup_orphans
from agents_reverse.plan import (
    ROOT_DIRECTORY,
    DirectoryTask,
    ExecutionPlan,
    FileTask,
    RootTask,
    ancestor_directories,
    build_directory_batches,
    build_execution_plan,
    build_root_tasks,
    parent_directory,
)
from agents_reverse.pool import TaskResult, run_pool
from agents_reverse.prompts import (
    DIRECTORY_SYSTEM_PROMPT,
    FILE_SYSTEM_PROMPT,
    ROOT_SYSTEM_PROMPTS,
    build_directory_prompt,
    build_file_prompt,
    build_root_prompt,
)
from agents_reverse.service import GenerationService, UsageTotals
from agents_reverse.storage.common import utc_now
from agents_reverse.storage.repository import StateRepository
from agents_reverse.trace import NullTracer, Tracer
from agents_reverse.validation import (
    check_missing_summaries,
    check_stale_references,
    log_warnings,
)
from agents_reverse.writer import SerialWriter

logger = logging.getLogger(__name__)

PLAN_FILE_NAME = "GENERATION-PLAN.md"

T = TypeVar("T")
A = TypeVar("A")
R = TypeVar("R")


class PipelineError(RuntimeError):
    """The pipeline cannot start."""


@dataclass(slots=True, frozen=True)
class TaskFailure:
    """One failed task with a human-readable reason."""

    task_id: str
    reason: str
    kind: FailureKind | None = None


@dataclass(slots=True)
class RunSummary:
    """Counts and failures of one generate or update run."""

    command: str
    plan: ExecutionPlan
    dry_run: bool = False
    commit: str | None = None
    processed: int = 0
    failed: int = 0
    not_started: int = 0
    files_analyzed: int = 0
    files_skipped: list[str] = field(default_factory=list)
    failures: list[TaskFailure] = field(default_factory=list)
    cleanup: CleanupResult | None = None
    usage: UsageTotals = field(default_factory=UsageTotals)
    first_run: bool = False

    @property
    def outcome(self) -> RunOutcome:
        return compute_outcome(processed=self.processed, failed=self.failed)

    @property
    def backend_unreachable(self) -> bool:
        return self.processed == 0 and any(
            failure.kind is FailureKind.CLI_NOT_FOUND for failure in self.failures
        )

    @property
    def exit_code(self) -> int:
        return exit_code_for(self.outcome, backend_unreachable=self.backend_unreachable)


def compute_outcome(*, processed: int, failed: int) -> RunOutcome:
    if failed == 0:
        return RunOutcome.NOTHING_TO_DO if processed == 0 else RunOutcome.FULL_SUCCESS
    if processed == 0:
        return RunOutcome.TOTAL_FAILURE
    return RunOutcome.PARTIAL_SUCCESS


def exit_code_for(outcome: RunOutcome, *, backend_unreachable: bool = False) -> int:
    """0 on success or nothing to do, 1 on partial success, 2 otherwise."""

    if backend_unreachable or outcome is RunOutcome.TOTAL_FAILURE:
        return 2
    if outcome is RunOutcome.PARTIAL_SUCCESS:
        return 1
    return 0


class PipelineRunner:
    """Runs file, directory and root phases through the worker pool.

    Phase 1 processes every file task at the configured concurrency. Phase 2
    runs the directory batches strictly one after another, deepest first, so
    a directory never starts before its subdirectories are done. Phase 3
    writes the root documents one at a time. Persistence goes through the
    serial writer so workers never contend for the database.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: Settings,
        *,
        repository: StateRepository,
        writer: SerialWriter,
        service: GenerationService | None = None,
        tracer: Tracer | None = None,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self._settings = settings
        self._root = settings.root.resolve()
        self._repository = repository
        self._writer = writer
        self._service = service
        self._tracer = tracer or NullTracer()
        self._on_progress = on_progress

    def generate(
        self,
        *,
        dry_run: bool = False,
        fail_fast: bool = False,
        concurrency: int | None = None,
    ) -> RunSummary:
        """Document the whole tree from scratch."""

        previous = self._repository.last_run()
        discovery = discover_files(self._root, self._settings.discovery)
        plan = build_execution_plan(
            discovery.included,
            self._root,
            include_architecture=self._settings.generation.include_architecture,
        )
        self._write_plan_file(plan)
        commit = current_commit(self._root)
        summary = RunSummary(command="generate", plan=plan, dry_run=dry_run, commit=commit)
        if dry_run or plan.is_empty:
            return summary

        self._execute(plan, summary, fail_fast=fail_fast, concurrency=concurrency)
        included = {discovery.relative(path) for path in discovery.included}
        for record in self._repository.list_files():
            if record.path not in included:
                self._writer.submit(_bind(self._repository.delete_file, record.path))
        self._finish(summary, baseline=previous.commit_hash if previous is not None else None)
        return summary

    def update(
        self,
        *,
        include_uncommitted: bool = False,
        dry_run: bool = False,
        fail_fast: bool = False,
        concurrency: int | None = None,
    ) -> RunSummary:
        """Regenerate only what changed since the last recorded run.

        Without a baseline, outside a git repository, or when the baseline
        commit is no longer reachable, this is a full ``generate``.
        """

        last_run = self._repository.last_run()
        if last_run is None or not last_run.commit_hash or not is_git_repository(self._root):
            logger.info("No usable baseline run; generating documentation for the full tree")
            return self._full_update(dry_run=dry_run, fail_fast=fail_fast, concurrency=concurrency)

        try:
            incremental = detect_changes(
                self._root,
                base_commit=last_run.commit_hash,
                records=self._repository,
                discovery=self._settings.discovery,
                include_uncommitted=include_uncommitted,
            )
        except GitError as error:
            logger.warning(
                "Cannot diff against baseline %s (%s); generating documentation for the full tree",
                last_run.commit_hash[:8],
                error,
            )
            return self._full_update(dry_run=dry_run, fail_fast=fail_fast, concurrency=concurrency)
        discovery = discover_files(self._root, self._settings.discovery)
        all_files = [discovery.relative(path) for path in discovery.included]
        self._queue_unfingerprinted(incremental, all_files)

        plan = self._build_incremental_plan(incremental, all_files)
        summary = RunSummary(
            command="update",
            plan=plan,
            dry_run=dry_run,
            commit=incremental.change_set.head_commit,
            files_skipped=list(incremental.files_skipped),
        )
        summary.cleanup = cleanup_orphans(
            self._root,
            removed_paths=incremental.paths_to_cleanup,
            affected_directories=incremental.change_set.affected_directories,
            dry_run=dry_run,
        )
        if dry_run:
            return summary

        for path in incremental.paths_to_cleanup:
            self._writer.submit(_bind(self._repository.delete_file, path))
        if not plan.is_empty:
            self._execute(plan, summary, fail_fast=fail_fast, concurrency=concurrency)
        self._finish(summary, baseline=last_run.commit_hash)
        return summary

    def _full_update(
        self,
        *,
        dry_run: bool,
        fail_fast: bool,
        concurrency: int | None,
    ) -> RunSummary:
        summary = self.generate(dry_run=dry_run, fail_fast=fail_fast, concurrency=concurrency)
        summary.command = "update"
        summary.first_run = True
        return summary

    def _queue_unfingerprinted(self, incremental: IncrementalPlan, all_files: list[str]) -> None:
        """Add included files that never got a fingerprint, e.g. after a failed run."""

        tracked = {record.path for record in self._repository.list_files()}
        queued = set(incremental.files_to_analyze) | set(incremental.files_skipped)
        missing = [path for path in all_files if path not in tracked and path not in queued]
        if not missing:
            return
        logger.info("Re-queueing %d files without a stored fingerprint", len(missing))
        incremental.files_to_analyze.extend(missing)
        incremental.change_set.added.extend(missing)
        incremental.change_set.affected_directories = affected_directories(
            incremental.files_to_analyze + incremental.paths_to_cleanup,
        )

    def _build_incremental_plan(
        self,
        incremental: IncrementalPlan,
        all_files: list[str],
    ) -> ExecutionPlan:
        if not incremental.has_work:
            return ExecutionPlan(root=self._root)
        base = build_execution_plan(
            [self._root / path for path in incremental.files_to_analyze],
            self._root,
        )
        live_directories = {
            ancestor for path in all_files for ancestor in ancestor_directories(path)
        }
        affected = set(incremental.change_set.affected_directories) & live_directories
        return ExecutionPlan(
            root=self._root,
            file_tasks=base.file_tasks,
            directory_batches=build_directory_batches(self._root, affected, all_files),
            root_tasks=build_root_tasks(
                self._root,
                _root_sources(self._root, all_files, live_directories),
                include_architecture=self._settings.generation.include_architecture,
            ),
        )

    def _execute(
        self,
        plan: ExecutionPlan,
        summary: RunSummary,
        *,
        fail_fast: bool,
        concurrency: int | None,
    ) -> None:
        if self._service is None:
            raise PipelineError("A generation service is required to execute a plan.")
        workers = concurrency or self._settings.generation.concurrency
        commit = summary.commit

        file_results = self._run_phase(
            "files",
            plan.file_tasks,
            lambda task: self._run_file_task(task, commit),
            summary,
            concurrency=workers,
            fail_fast=fail_fast,
        )
        summary.files_analyzed = sum(1 for result in file_results if result and result.success)
        self._validate(lambda: check_missing_summaries(plan.file_tasks))
        if fail_fast and summary.failed:
            summary.not_started += len(plan.directory_tasks) + len(plan.root_tasks)
            return

        for index, batch in enumerate(plan.directory_batches):
            self._run_phase(
                f"directories:depth-{batch[0].depth}",
                batch,
                self._run_directory_task,
                summary,
                concurrency=workers,
                fail_fast=fail_fast,
            )
            if fail_fast and summary.failed:
                remaining = plan.directory_batches[index + 1 :]
                summary.not_started += sum(len(rest) for rest in remaining)
                summary.not_started += len(plan.root_tasks)
                return
        self._validate(lambda: check_stale_references(plan.directory_tasks))

        self._run_phase(
            "root",
            plan.root_tasks,
            self._run_root_task,
            summary,
            concurrency=1,
            fail_fast=fail_fast,
        )

    def _run_phase(  # noqa: PLR0913
        self,
        phase: str,
        tasks: Sequence[T],
        run_one: Callable[[T], object],
        summary: RunSummary,
        *,
        concurrency: int,
        fail_fast: bool,
    ) -> list[TaskResult[object] | None]:
        if not tasks:
            return []
        total = len(tasks)
        done = 0
        done_lock = threading.Lock()
        self._tracer.emit("phase:start", phase=phase, task_count=total, concurrency=concurrency)
        logger.info("Phase %s: %d tasks", phase, total)

        def _on_complete(result: TaskResult[object]) -> None:
            nonlocal done
            with done_lock:
                done += 1
                position = done
            task_id = _task_id(tasks[result.index])
            if result.success:
                self._emit(f"[{phase} {position}/{total}] ok {task_id}")
                return
            self._emit(f"[{phase} {position}/{total}] FAILED {task_id}: {result.error}")

        results = run_pool(
            [_bind(run_one, task) for task in tasks],
            concurrency=concurrency,
            fail_fast=fail_fast,
            on_complete=_on_complete,
            tracer=self._tracer,
            phase=phase,
        )
        for task, result in zip(tasks, results, strict=True):
            if result is None:
                summary.not_started += 1
            elif result.success:
                summary.processed += 1
            else:
                kind = result.error.kind if isinstance(result.error, GenerationFailure) else None
                summary.failed += 1
                summary.failures.append(
                    TaskFailure(task_id=_task_id(task), reason=str(result.error), kind=kind),
                )
        self._tracer.emit("phase:end", phase=phase, processed_total=summary.processed)
        return results

    def _run_file_task(self, task: FileTask, commit: str | None) -> GenerationResult:
        content_hash = compute_content_hash(task.path)
        content = task.path.read_text("utf-8", errors="replace")
        result = self._generate(
            build_file_prompt(
                relative_path=task.relative_path,
                category=task.category,
                content=content,
                prior_summary=task.prior_summary,
            ),
            FILE_SYSTEM_PROMPT,
            task_label=task.task_id,
        )
        generated_at = utc_now()
        write_sum_file(
            task.path,
            SumFile(
                summary=result.text,
                file_type=task.category,
                generated_at=generated_at,
                content_hash=content_hash,
                last_analyzed_commit=commit,
            ),
        )
        record = FileRecord(
            path=task.relative_path,
            content_hash=content_hash,
            generated_at=generated_at,
            last_analyzed_commit=commit,
        )
        self._writer.submit(_bind(self._repository.upsert_file, record))
        return result

    def _run_directory_task(self, task: DirectoryTask) -> GenerationResult:
        sections = self._artifact_sections(task.child_artifacts)
        if not sections:
            raise PipelineError(f"No child summaries available for {task.relative_path}")
        result = self._generate(
            build_directory_prompt(
                relative_path=task.relative_path,
                sections=sections,
                local_notes=read_local_notes(task.path),
            ),
            DIRECTORY_SYSTEM_PROMPT,
            task_label=task.task_id,
        )
        outcome = write_directory_doc(task.path, result.text)
        if outcome is WriteOutcome.PRESERVED_USER_FILE:
            logger.warning(
                "Skipped %s: hand-written document and %s both exist",
                task.output_path,
                LOCAL_DOC_NAME,
            )
        return result

    def _run_root_task(self, task: RootTask) -> GenerationResult:
        sections = self._artifact_sections(task.source_artifacts)
        if task.name == DIRECTORY_DOC_NAME:
            notes = read_local_notes(self._root)
            if notes:
                sections.append((f"User notes ({LOCAL_DOC_NAME})", notes))
        result = self._generate(
            build_root_prompt(document_name=task.name, sections=sections),
            ROOT_SYSTEM_PROMPTS[task.name],
            task_label=task.task_id,
        )
        preserve_as = LOCAL_DOC_NAME if task.name == DIRECTORY_DOC_NAME else None
        outcome = write_generated_document(task.output_path, result.text, preserve_as=preserve_as)
        if outcome is WriteOutcome.PRESERVED_USER_FILE:
            logger.warning("Skipped hand-written %s", task.output_path)
        if task.name == DIRECTORY_DOC_NAME:
            write_root_pointer(self._root)
        return result

    def _generate(self, prompt: str, system_prompt: str, *, task_label: str) -> GenerationResult:
        assert self._service is not None
        result = self._service.generate(prompt, system_prompt, task_label=task_label)
        if not result.text.strip():
            raise GenerationFailure(
                "backend returned an empty response",
                kind=FailureKind.PARSE_ERROR,
                attempts=1,
                duration_ms=result.duration_ms,
            )
        return result

    def _artifact_sections(self, artifacts: Sequence[Path]) -> list[tuple[str, str]]:
        sections: list[tuple[str, str]] = []
        for artifact in artifacts:
            label = artifact.relative_to(self._root).as_posix()
            if artifact.name == DIRECTORY_DOC_NAME:
                body = read_generated_body(artifact)
            else:
                source = artifact.with_name(artifact.name.removesuffix(SUM_SUFFIX))
                sum_file = read_sum_file(source)
                body = sum_file.summary if sum_file is not None else None
            if body is None:
                logger.debug("Artifact %s is missing; leaving it out of the prompt", label)
                continue
            sections.append((label, body))
        return sections

    def _validate(self, check: Callable[[], list]) -> None:
        try:
            log_warnings(check())
        except Exception:  # noqa: BLE001
            logger.warning("Validation pass failed", exc_info=True)

    def _finish(self, summary: RunSummary, *, baseline: str | None = None) -> None:
        """Record the run; incomplete runs keep ``baseline`` as the next diff base."""

        if self._service is not None:
            summary.usage = self._service.usage
        commit = summary.commit
        if baseline and (summary.failed or summary.not_started):
            logger.warning(
                "%d task(s) failed and %d did not start; next update diffs from %s again",
                summary.failed,
                summary.not_started,
                baseline[:8],
            )
            commit = baseline
        record = RunRecord(
            commit_hash=commit,
            completed_at=utc_now(),
            files_analyzed=summary.files_analyzed,
            files_skipped=len(summary.files_skipped),
        )
        self._writer.submit(_bind(self._repository.record_run, record))
        self._writer.flush()
        logger.info(
            "%s finished: %s (%d processed, %d failed)",
            summary.command,
            summary.outcome.value,
            summary.processed,
            summary.failed,
        )

    def _write_plan_file(self, plan: ExecutionPlan) -> None:
        state_dir = self._settings.state_dir
        try:
            state_dir.mkdir(parents=True, exist_ok=True)
            (state_dir / PLAN_FILE_NAME).write_text(plan.render_markdown(), "utf-8")
        except OSError:
            logger.warning("Could not write %s", PLAN_FILE_NAME, exc_info=True)

    def _emit(self, message: str) -> None:
        if self._on_progress is None:
            logger.info(message)
            return
        self._on_progress(message)


def _root_sources(root: Path, all_files: list[str], directories: set[str]) -> list[Path]:
    sources = [root / directory / DIRECTORY_DOC_NAME for directory in sorted(directories)]
    sources.extend(
        sum_path_for(root / path)
        for path in all_files
        if parent_directory(path) == ROOT_DIRECTORY
    )
    return sources


def _task_id(task: object) -> str:
    return getattr(task, "task_id", repr(task))


def _bind(function: Callable[[A], R], argument: A) -> Callable[[], R]:
    return lambda: function(argument)
