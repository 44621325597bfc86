"""CLI entrypoint for agents-reverse."""

import logging
import sys
from pathlib import Path

import rich_click as click

from agents_reverse import __version__
from agents_reverse.config import SUPPORTED_BACKENDS
from agents_reverse.controllers import (
    AgentsReverseController,
    CleanCommand,
    CommandResult,
    DiscoverCommand,
    GenerateCommand,
    InitCommand,
    RunOptions,
    StatusCommand,
    UpdateCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AgentsReverseController(on_progress=click.echo)

_ROOT_ARGUMENT = click.argument(
    "root",
    required=False,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)


@click.group()
@click.version_option(version=__version__, prog_name="agents-reverse")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors.")
def agents_reverse(verbose: bool, quiet: bool) -> None:
    """Generate layered `AGENTS.md` documentation for a codebase with AI CLIs."""

    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _run_options(func):  # noqa: ANN001, ANN202
    decorators = [
        _ROOT_ARGUMENT,
        click.option("--dry-run", is_flag=True, help="Show the plan without calling any backend."),
        click.option(
            "--concurrency",
            type=click.IntRange(min=1, max=20),
            default=None,
            help="Parallel backend calls. Defaults to a value derived from CPU and memory.",
        ),
        click.option("--fail-fast", is_flag=True, help="Stop scheduling tasks after a failure."),
        click.option(
            "--backend",
            type=click.Choice(SUPPORTED_BACKENDS, case_sensitive=False),
            default=None,
            help="AI CLI to use. `auto` picks the first installed one.",
        ),
        click.option("--model", default=None, help="Model name or alias passed to the backend."),
        click.option("--trace", is_flag=True, help="Write an NDJSON run trace."),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


@agents_reverse.command("generate")
@_run_options
@click.option(
    "--architecture",
    is_flag=True,
    help="Also write a root `ARCHITECTURE.md`.",
)
def generate(  # noqa: PLR0913
    root: Path | None,
    dry_run: bool,
    concurrency: int | None,
    fail_fast: bool,
    backend: str | None,
    model: str | None,
    trace: bool,
    architecture: bool,
) -> None:
    """Document every analyzable file, then directories deepest first, then the root."""

    _finish(
        _invoke(
            lambda: CONTROLLER.generate(
                GenerateCommand(
                    options=RunOptions(
                        root=root,
                        dry_run=dry_run,
                        fail_fast=fail_fast,
                        concurrency=concurrency,
                        backend=backend,
                        model=model,
                        trace=trace,
                    ),
                    architecture=architecture,
                ),
            ),
        ),
    )


@agents_reverse.command("update")
@_run_options
@click.option(
    "--uncommitted",
    is_flag=True,
    help="Include staged, unstaged and untracked changes.",
)
def update(  # noqa: PLR0913
    root: Path | None,
    dry_run: bool,
    concurrency: int | None,
    fail_fast: bool,
    backend: str | None,
    model: str | None,
    trace: bool,
    uncommitted: bool,
) -> None:
    """Regenerate documentation for what changed since the last run."""

    _finish(
        _invoke(
            lambda: CONTROLLER.update(
                UpdateCommand(
                    options=RunOptions(
                        root=root,
                        dry_run=dry_run,
                        fail_fast=fail_fast,
                        concurrency=concurrency,
                        backend=backend,
                        model=model,
                        trace=trace,
                    ),
                    include_uncommitted=uncommitted,
                ),
            ),
        ),
    )


@agents_reverse.command("init")
@_ROOT_ARGUMENT
@click.option("--force", is_flag=True, help="Overwrite an existing configuration file.")
def init(root: Path | None, force: bool) -> None:
    """Write `.agents-reverse/config.yaml` with defaults and ignore `*.sum` files in git."""

    _finish(_invoke(lambda: CONTROLLER.init(InitCommand(root=root, force=force))))


@agents_reverse.command("discover")
@_ROOT_ARGUMENT
@click.option("--show-excluded", is_flag=True, help="List excluded files with reasons.")
def discover(root: Path | None, show_excluded: bool) -> None:
    """List the files that would be analyzed."""

    _finish(
        _invoke(
            lambda: CONTROLLER.discover(DiscoverCommand(root=root, show_excluded=show_excluded)),
        ),
    )


@agents_reverse.command("clean")
@_ROOT_ARGUMENT
@click.option("--dry-run", is_flag=True, help="Only list what would be deleted.")
def clean(root: Path | None, dry_run: bool) -> None:
    """Remove generated `.sum` files, generated documents and the state directory."""

    _finish(_invoke(lambda: CONTROLLER.clean(CleanCommand(root=root, dry_run=dry_run))))


@agents_reverse.command("status")
@_ROOT_ARGUMENT
@click.option(
    "--recent-runs",
    type=click.IntRange(min=1, max=50),
    default=5,
    show_default=True,
    help="How many latest runs to display.",
)
def status(root: Path | None, recent_runs: int) -> None:
    """Show tracked files and recent runs."""

    _finish(
        _invoke(lambda: CONTROLLER.status(StatusCommand(root=root, recent_runs=recent_runs))),
    )


def _invoke(action) -> CommandResult:  # noqa: ANN001
    try:
        return action()
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _finish(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if result.exit_code:
        sys.exit(result.exit_code)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agents_reverse()
