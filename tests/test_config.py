from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agents_reverse.config import (
    DEFAULT_EXCLUDE_PATTERNS,
    GenerationSettings,
    RetrySettings,
    Settings,
    TraceSettings,
    compute_default_concurrency,
)

pytestmark = [
    allure.epic("Documentation Pipeline"),
    allure.feature("Configuration"),
]

_GB = 1024**3


@pytest.mark.parametrize(
    ("cpu_count", "memory_bytes", "expected"),
    [
        (1, 64 * _GB, 5),
        (2, 64 * _GB, 10),
        (8, 64 * _GB, 20),
        (8, 4 * _GB, 3),
        (8, 2 * _GB, 2),
        (None, None, 10),
        (4, None, 20),
        (4, _GB // 2, 20),
    ],
)
def test_default_concurrency_is_clamped_by_cores_and_memory(
    cpu_count: int | None,
    memory_bytes: int | None,
    expected: int,
) -> None:
    assert (
        compute_default_concurrency(cpu_count=cpu_count, total_memory_bytes=memory_bytes)
        == expected
    )


def test_validate_rejects_unknown_backend() -> None:
    settings = Settings(generation=GenerationSettings(backend="cursor"))

    with pytest.raises(ValueError, match="Unsupported backend"):
        settings.validate()


def test_validate_rejects_out_of_range_concurrency() -> None:
    with pytest.raises(ValueError, match="CONCURRENCY"):
        Settings(generation=GenerationSettings(concurrency=0)).validate()
    with pytest.raises(ValueError, match="CONCURRENCY"):
        Settings(generation=GenerationSettings(concurrency=21)).validate()


def test_validate_rejects_inverted_retry_delays() -> None:
    settings = Settings(retry=RetrySettings(base_delay_seconds=10.0, max_delay_seconds=1.0))

    with pytest.raises(ValueError, match="RETRY_MAX_DELAY"):
        settings.validate()


def test_validate_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError, match="TIMEOUT_SECONDS"):
        Settings(generation=GenerationSettings(timeout_seconds=0)).validate()


def test_validate_rejects_zero_trace_keep_runs() -> None:
    with pytest.raises(ValueError, match="TRACE_KEEP_RUNS"):
        Settings(trace=TraceSettings(keep_runs=0)).validate()


def test_from_env_reads_generation_settings(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("AGENTS_REVERSE_BACKEND", " Codex ")
    monkeypatch.setenv("AGENTS_REVERSE_MODEL", "gpt-5")
    monkeypatch.setenv("AGENTS_REVERSE_TIMEOUT_SECONDS", "90")
    monkeypatch.setenv("AGENTS_REVERSE_CONCURRENCY", "7")
    monkeypatch.setenv("AGENTS_REVERSE_INCLUDE_ARCHITECTURE", "yes")
    monkeypatch.setenv("AGENTS_REVERSE_MAX_RETRIES", "1")

    settings = Settings.from_env(root=tmp_path)

    assert settings.root == tmp_path.resolve()
    assert settings.generation.backend == "codex"
    assert settings.generation.model == "gpt-5"
    assert settings.generation.timeout_seconds == 90.0
    assert settings.generation.concurrency == 7
    assert settings.generation.include_architecture is True
    assert settings.retry.max_retries == 1
    settings.validate()


def test_from_env_extends_exclude_patterns_and_vendor_dirs(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("AGENTS_REVERSE_EXCLUDE_PATTERNS", "*.snap, fixtures/*")
    monkeypatch.setenv("AGENTS_REVERSE_VENDOR_DIRS", "third_party")

    settings = Settings.from_env(root=tmp_path)

    assert settings.discovery.exclude_patterns == (*DEFAULT_EXCLUDE_PATTERNS, "*.snap", "fixtures/*")
    assert "third_party" in settings.discovery.vendor_dirs
    assert "node_modules" in settings.discovery.vendor_dirs


def test_from_env_rejects_invalid_boolean(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("AGENTS_REVERSE_TRACE", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value for AGENTS_REVERSE_TRACE"):
        Settings.from_env(root=tmp_path)


def test_state_paths_live_under_root(tmp_path: Path) -> None:
    settings = Settings(root=tmp_path)

    assert settings.state_dir == tmp_path / ".agents-reverse"
    assert settings.db_path == tmp_path / ".agents-reverse" / "state.db"
    assert settings.traces_dir == tmp_path / ".agents-reverse" / "traces"
