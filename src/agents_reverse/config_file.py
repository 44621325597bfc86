"""Project configuration file `.agents-reverse/config.yaml`.

Values from the file replace the built-in defaults; environment variables and
command-line flags still take precedence over the file.
"""

from __future__ import annotations

import logging
import textwrap
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.yaml"
GITIGNORE_SECTION = "# agents-reverse"
GITIGNORE_SUM_PATTERN = "*.sum"

_STRING_LIST = "list[str]"

_SCHEMA: dict[str, dict[str, tuple[type, ...] | str]] = {
    "exclude": {
        "patterns": _STRING_LIST,
        "vendor_dirs": _STRING_LIST,
        "binary_extensions": _STRING_LIST,
    },
    "options": {
        "max_file_size": (int,),
        "respect_gitignore": (bool,),
    },
    "ai": {
        "backend": (str,),
        "model": (str,),
        "command": (str,),
        "timeout_seconds": (int, float),
        "grace_seconds": (int, float),
        "concurrency": (int,),
        "include_architecture": (bool,),
    },
    "retry": {
        "max_retries": (int,),
        "base_delay_seconds": (int, float),
        "max_delay_seconds": (int, float),
        "multiplier": (int, float),
        "jitter_seconds": (int, float),
    },
    "trace": {
        "enabled": (bool,),
        "keep_runs": (int,),
    },
}


class ConfigFileError(ValueError):
    """The project configuration file is not valid YAML or does not match the schema."""


ConfigValues = dict[str, dict[str, Any]]


def load_config_file(path: Path) -> ConfigValues:
    """Read and validate the file; a missing file gives an empty mapping.

    Keys set to ``null`` are treated as unset.
    """

    if not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as error:
        raise ConfigFileError(f"Invalid YAML in {path}: {error}") from error
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(f"{path} must be a mapping, got {type(data).__name__}")

    values: ConfigValues = {}
    for section_name, section in data.items():
        fields = _SCHEMA.get(section_name)
        if fields is None:
            raise ConfigFileError(
                f"{path}: unknown section {section_name!r}. "
                f"Expected one of: {', '.join(_SCHEMA)}.",
            )
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ConfigFileError(f"{path}: section {section_name!r} must be a mapping")
        values[section_name] = _validate_section(path, section_name, section, fields)
    logger.debug("Loaded configuration from %s", path)
    return values


def _validate_section(
    path: Path,
    section_name: str,
    section: dict[str, Any],
    fields: dict[str, tuple[type, ...] | str],
) -> dict[str, Any]:
    validated: dict[str, Any] = {}
    for key, value in section.items():
        expected = fields.get(key)
        if expected is None:
            raise ConfigFileError(f"{path}: unknown key {section_name}.{key}")
        if value is None:
            continue
        if not _matches(value, expected):
            raise ConfigFileError(
                f"{path}: {section_name}.{key} must be {_describe(expected)}, got {value!r}",
            )
        validated[key] = tuple(value) if isinstance(value, list) else value
    return validated


def _matches(value: object, expected: tuple[type, ...] | str) -> bool:
    if expected == _STRING_LIST:
        return isinstance(value, list) and all(isinstance(item, str) for item in value)
    assert isinstance(expected, tuple)
    if isinstance(value, bool) and bool not in expected:
        return False
    return isinstance(value, expected)


def _describe(expected: tuple[type, ...] | str) -> str:
    if isinstance(expected, str):
        return expected
    return " or ".join(kind.__name__ for kind in expected)


def render_default_config(  # noqa: PLR0913
    *,
    exclude_patterns: Iterable[str],
    vendor_dirs: Iterable[str],
    binary_extensions: Iterable[str],
    max_file_size: int,
    model: str,
    timeout_seconds: float,
    max_retries: int,
    keep_runs: int,
) -> str:
    """Commented YAML listing every setting with its default value."""

    return "\n".join(
        [
            "# agents-reverse configuration",
            "# Environment variables (AGENTS_REVERSE_*) and command-line flags override",
            "# the values below.",
            "",
            "exclude:",
            "  # Glob patterns matched against file names and relative paths",
            "  patterns:",
            _block_list(exclude_patterns),
            "  # Directory names never descended into",
            "  vendor_dirs:",
            _block_list(vendor_dirs),
            "  # Extensions treated as binary without reading the file",
            "  binary_extensions:",
            _block_list(binary_extensions),
            "",
            "options:",
            "  # Files larger than this many bytes are skipped",
            f"  max_file_size: {max_file_size}",
            "  respect_gitignore: true",
            "",
            "ai:",
            "  # auto, claude, codex, gemini or opencode",
            "  backend: auto",
            f"  model: {model}",
            "  # Replaces the backend executable, e.g. a wrapper script",
            "  # command: my-claude-wrapper --profile docs",
            f"  timeout_seconds: {timeout_seconds:g}",
            "  # Parallel backend calls (1-20); derived from CPU and memory when unset",
            "  # concurrency: 8",
            "  include_architecture: false",
            "",
            "retry:",
            "  # Retries after the first attempt, for rate-limited calls only",
            f"  max_retries: {max_retries}",
            "",
            "trace:",
            "  enabled: false",
            f"  keep_runs: {keep_runs}",
            "",
        ],
    )


def _block_list(values: Iterable[str]) -> str:
    dumped = yaml.safe_dump(list(values), default_flow_style=False, allow_unicode=True)
    return textwrap.indent(dumped.rstrip("\n"), "    ")


def ensure_gitignore_entry(root: Path) -> bool:
    """Add ``*.sum`` to the project ``.gitignore``; return whether the file changed."""

    gitignore = root / ".gitignore"
    content = gitignore.read_text("utf-8") if gitignore.exists() else ""
    lines = content.splitlines()
    if any(line.strip() == GITIGNORE_SUM_PATTERN for line in lines):
        return False

    if GITIGNORE_SECTION in lines:
        index = lines.index(GITIGNORE_SECTION)
        lines.insert(index + 1, GITIGNORE_SUM_PATTERN)
        updated = "\n".join(lines) + "\n"
    else:
        separator = "\n" if content and not content.endswith("\n") else ""
        if content:
            separator += "\n"
        updated = f"{content}{separator}{GITIGNORE_SECTION}\n{GITIGNORE_SUM_PATTERN}\n"
    gitignore.write_text(updated, "utf-8")
    return True
