"""Controllers for agents-reverse CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from agents_reverse.backend import BackendNotAvailableError, resolve_backend
from agents_reverse.config import (
    DiscoverySettings,
    GenerationSettings,
    RetrySettings,
    Settings,
    TraceSettings,
    resolve_root,
)
from agents_reverse.config_file import (
    CONFIG_FILE_NAME,
    GITIGNORE_SUM_PATTERN,
    ensure_gitignore_entry,
    render_default_config,
)
from agents_reverse.discovery import DiscoveryError, discover_files
from agents_reverse.orphan_cleaner import remove_generated_artifacts
from agents_reverse.plan import PlanConstructionError
from agents_reverse.retry import RetryPolicy
from agents_reverse.runner import PipelineRunner, RunSummary
from agents_reverse.service import GenerationService
from agents_reverse.storage.repository import StateRepository
from agents_reverse.trace import NullTracer, Tracer, open_trace
from agents_reverse.writer import SerialWriter

logger = logging.getLogger(__name__)

EXIT_BACKEND_UNAVAILABLE = 2
EXIT_FATAL = 2


@dataclass(slots=True)
class RunOptions:
    """Options shared by generate and update."""

    root: Path | None
    dry_run: bool = False
    fail_fast: bool = False
    concurrency: int | None = None
    backend: str | None = None
    model: str | None = None
    trace: bool = False


@dataclass(slots=True)
class GenerateCommand:
    """CLI input for a full documentation run."""

    options: RunOptions
    architecture: bool = False


@dataclass(slots=True)
class UpdateCommand:
    """CLI input for an incremental documentation run."""

    options: RunOptions
    include_uncommitted: bool = False


@dataclass(slots=True)
class InitCommand:
    """CLI input for writing the project configuration file."""

    root: Path | None
    force: bool = False


@dataclass(slots=True)
class DiscoverCommand:
    """CLI input for listing analyzable files."""

    root: Path | None
    show_excluded: bool = False


@dataclass(slots=True)
class CleanCommand:
    """CLI input for removing generated artifacts."""

    root: Path | None
    dry_run: bool = False


@dataclass(slots=True)
class StatusCommand:
    """CLI input for incremental state inspection."""

    root: Path | None
    recent_runs: int = 5


@dataclass(slots=True)
class CommandResult:
    """Lines to print and the process exit code."""

    lines: list[str] = field(default_factory=list)
    exit_code: int = 0


class AgentsReverseController:
    """Coordinates discovery, pipeline, cleanup and status CLI operations."""

    def __init__(self, *, on_progress: Callable[[str], None] | None = None) -> None:
        self._on_progress = on_progress

    def generate(self, command: GenerateCommand) -> CommandResult:
        settings = _settings(command.options)
        if command.architecture:
            settings.generation.include_architecture = True
        return self._run(
            settings,
            command.options,
            lambda runner: runner.generate(
                dry_run=command.options.dry_run,
                fail_fast=command.options.fail_fast,
                concurrency=command.options.concurrency,
            ),
        )

    def update(self, command: UpdateCommand) -> CommandResult:
        settings = _settings(command.options)
        return self._run(
            settings,
            command.options,
            lambda runner: runner.update(
                include_uncommitted=command.include_uncommitted,
                dry_run=command.options.dry_run,
                fail_fast=command.options.fail_fast,
                concurrency=command.options.concurrency,
            ),
        )

    def init(self, command: InitCommand) -> CommandResult:
        settings = Settings(root=resolve_root(command.root))
        config_path = settings.config_path
        lines: list[str] = []
        if config_path.exists() and not command.force:
            logger.warning("Configuration already exists at %s", config_path)
            lines.append(
                f"Configuration already exists at {_relative(settings.root, config_path)}. "
                "Use --force to overwrite it.",
            )
        else:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(_default_config_text(), "utf-8")
            lines.append(f"Created configuration at {_relative(settings.root, config_path)}")
        if ensure_gitignore_entry(settings.root):
            lines.append(f"Added {GITIGNORE_SUM_PATTERN} to .gitignore")
        return CommandResult(lines=lines)

    def discover(self, command: DiscoverCommand) -> CommandResult:
        settings = Settings.from_env(root=command.root)
        try:
            result = discover_files(settings.root, settings.discovery)
        except DiscoveryError as error:
            return CommandResult(lines=[f"Error: {error}"], exit_code=EXIT_FATAL)

        lines = [result.relative(path) for path in result.included]
        lines.append(f"Included: {len(result.included)} Excluded: {len(result.excluded)}")
        if command.show_excluded:
            lines.append("Excluded files:")
            lines.extend(
                f"  {_relative(settings.root, item.path)} [{item.filter_name}] {item.reason}"
                for item in result.excluded
            )
        return CommandResult(lines=lines)

    def clean(self, command: CleanCommand) -> CommandResult:
        settings = Settings.from_env(root=command.root)
        result = remove_generated_artifacts(
            settings.root,
            skip_dirs=settings.discovery.vendor_dirs,
            state_dir=settings.state_dir,
            keep_state_files=(CONFIG_FILE_NAME,),
            dry_run=command.dry_run,
        )
        paths = [*result.deleted_sum_files, *result.deleted_directory_docs]
        if not paths and result.deleted_state_dir is None:
            return CommandResult(lines=["No generated artifacts found."])

        lines = ["Files that would be deleted:"] if command.dry_run else ["Deleted:"]
        lines.extend(f"  {_relative(settings.root, path)}" for path in paths)
        if result.deleted_state_dir is not None:
            lines.append(f"  {_relative(settings.root, result.deleted_state_dir)}/")
        lines.append(
            f"{len(result.deleted_sum_files)} .sum file(s), "
            f"{len(result.deleted_directory_docs)} generated document(s)",
        )
        if command.dry_run:
            lines.append("Dry run: no files were deleted.")
        return CommandResult(lines=lines)

    def status(self, command: StatusCommand) -> CommandResult:
        settings = Settings.from_env(root=command.root)
        if not settings.db_path.exists():
            return CommandResult(lines=["No runs recorded yet. Run `agents-reverse generate`."])

        with _repository(settings) as repository:
            tracked = repository.list_files()
            runs = repository.list_runs(limit=command.recent_runs)

        lines = [f"Root: {settings.root}", f"Tracked files: {len(tracked)}"]
        if not runs:
            lines.append("Runs: none")
            return CommandResult(lines=lines)
        lines.append("Recent runs:")
        lines.extend(
            f"  #{run.id} {run.completed_at.isoformat()} commit={(run.commit_hash or '-')[:12]} "
            f"analyzed={run.files_analyzed} skipped={run.files_skipped}"
            for run in runs
        )
        return CommandResult(lines=lines)

    def _run(
        self,
        settings: Settings,
        options: RunOptions,
        action: Callable[[PipelineRunner], RunSummary],
    ) -> CommandResult:
        service: GenerationService | None = None
        with SerialWriter(name="agents-reverse-writer") as writer:
            tracer = _tracer(settings, writer=writer, enabled=options.trace)
            if not options.dry_run:
                try:
                    service = _service(settings, tracer=tracer)
                except BackendNotAvailableError as error:
                    return CommandResult(
                        lines=[f"Error: {error}"],
                        exit_code=EXIT_BACKEND_UNAVAILABLE,
                    )
            try:
                with _repository(settings) as repository:
                    runner = PipelineRunner(
                        settings,
                        repository=repository,
                        writer=writer,
                        service=service,
                        tracer=tracer,
                        on_progress=self._on_progress,
                    )
                    summary = action(runner)
                    writer.flush()
            except (DiscoveryError, PlanConstructionError) as error:
                return CommandResult(lines=[f"Error: {error}"], exit_code=EXIT_FATAL)
        return CommandResult(lines=render_summary(summary), exit_code=summary.exit_code)


def render_summary(summary: RunSummary) -> list[str]:
    """Operator-facing report: counts by outcome, then failed tasks."""

    plan = summary.plan
    if summary.dry_run:
        lines = plan.render_markdown().rstrip().splitlines()
        if summary.files_skipped:
            lines.append(f"Unchanged (skipped): {len(summary.files_skipped)}")
        if summary.cleanup is not None and summary.cleanup.total:
            lines.append(f"Artifacts to remove: {summary.cleanup.total}")
        return lines

    lines = [
        f"{summary.command} finished: {summary.outcome.value}",
        f"Tasks: processed={summary.processed} failed={summary.failed} "
        f"not_started={summary.not_started} skipped={len(summary.files_skipped)}",
    ]
    if summary.first_run:
        lines.append("No previous run found: full generation.")
    if summary.cleanup is not None and summary.cleanup.total:
        lines.append(f"Removed orphaned artifacts: {summary.cleanup.total}")
    usage = summary.usage
    if usage.calls:
        lines.append(
            f"Usage: calls={usage.calls} retries={usage.retries} "
            f"input_tokens={usage.input_tokens} output_tokens={usage.output_tokens} "
            f"cost_usd={usage.cost_usd:.4f}",
        )
    if summary.failures:
        lines.append("Failed:")
        lines.extend(f"  {failure.task_id}: {failure.reason}" for failure in summary.failures)
    return lines


def _settings(options: RunOptions) -> Settings:
    settings = Settings.from_env(root=options.root)
    if options.backend:
        settings.generation.backend = options.backend.lower()
    if options.model:
        settings.generation.model = options.model
    if options.concurrency is not None:
        settings.generation.concurrency = options.concurrency
    if options.trace:
        settings.trace.enabled = True
    settings.validate()
    return settings


def _default_config_text() -> str:
    generation = GenerationSettings()
    discovery = DiscoverySettings()
    return render_default_config(
        exclude_patterns=discovery.exclude_patterns,
        vendor_dirs=discovery.vendor_dirs,
        binary_extensions=discovery.binary_extensions,
        max_file_size=discovery.max_file_size_bytes,
        model=generation.model,
        timeout_seconds=generation.timeout_seconds,
        max_retries=RetrySettings().max_retries,
        keep_runs=TraceSettings().keep_runs,
    )


def _service(settings: Settings, *, tracer: Tracer) -> GenerationService:
    backend = resolve_backend(settings.generation.backend, command=settings.generation.command)
    logger.info("Using %s backend", backend.name)
    return GenerationService(
        backend,
        model=settings.generation.model,
        timeout_seconds=settings.generation.timeout_seconds,
        grace_seconds=settings.generation.grace_seconds,
        retry_policy=RetryPolicy.from_settings(settings.retry),
        tracer=tracer,
        cwd=settings.root,
    )


def _tracer(settings: Settings, *, writer: SerialWriter, enabled: bool) -> Tracer:
    if not (enabled or settings.trace.enabled):
        return NullTracer()
    return open_trace(settings.traces_dir, writer=writer, keep_runs=settings.trace.keep_runs)


@contextmanager
def _repository(settings: Settings) -> Iterator[StateRepository]:
    repository = StateRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


def _relative(root: Path, path: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)
