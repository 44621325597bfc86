from __future__ import annotations

import os
from pathlib import Path

import allure
import pytest

from agents_reverse.config import (
    DEFAULT_BINARY_EXTENSIONS,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_VENDOR_DIRS,
    Settings,
)
from agents_reverse.config_file import (
    ConfigFileError,
    ensure_gitignore_entry,
    load_config_file,
    render_default_config,
)

pytestmark = [
    allure.epic("Documentation Pipeline"),
    allure.feature("Configuration File"),
]


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in list(os.environ):
        if name.startswith("AGENTS_REVERSE_"):
            monkeypatch.delenv(name)
    return monkeypatch


def _write_config(root: Path, text: str) -> Path:
    path = root / ".agents-reverse" / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, "utf-8")
    return path


def test_file_values_replace_defaults(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        """
exclude:
  patterns: ["*.snap"]
options:
  max_file_size: 2048
  respect_gitignore: false
ai:
  backend: Gemini
  model: pro
  timeout_seconds: 45
  concurrency: 3
retry:
  max_retries: 1
trace:
  enabled: true
  keep_runs: 7
""",
    )

    settings = Settings.from_env(root=tmp_path)

    assert settings.discovery.exclude_patterns == ("*.snap",)
    assert settings.discovery.vendor_dirs == DEFAULT_VENDOR_DIRS
    assert settings.discovery.max_file_size_bytes == 2048
    assert settings.discovery.respect_gitignore is False
    assert settings.generation.backend == "gemini"
    assert settings.generation.model == "pro"
    assert settings.generation.timeout_seconds == 45.0
    assert settings.generation.concurrency == 3
    assert settings.retry.max_retries == 1
    assert settings.trace.enabled is True
    assert settings.trace.keep_runs == 7
    settings.validate()


def test_environment_overrides_file_values(
    clean_env: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    _write_config(
        tmp_path,
        "exclude:\n  patterns: ['*.snap']\nai:\n  model: opus\n  concurrency: 3\n",
    )
    clean_env.setenv("AGENTS_REVERSE_MODEL", "haiku")
    clean_env.setenv("AGENTS_REVERSE_CONCURRENCY", "5")
    clean_env.setenv("AGENTS_REVERSE_EXCLUDE_PATTERNS", "fixtures/*")

    settings = Settings.from_env(root=tmp_path)

    assert settings.generation.model == "haiku"
    assert settings.generation.concurrency == 5
    assert settings.discovery.exclude_patterns == ("*.snap", "fixtures/*")


def test_null_values_and_empty_file_leave_defaults(
    clean_env: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    path = _write_config(tmp_path, "ai:\n  model: null\ntrace:\n")

    assert load_config_file(path) == {"ai": {}}
    settings = Settings.from_env(root=tmp_path)
    assert settings.generation.model == "sonnet"

    path.write_text("", "utf-8")
    assert load_config_file(path) == {}


def test_missing_file_gives_empty_values(tmp_path: Path) -> None:
    assert load_config_file(tmp_path / "absent.yaml") == {}


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("ai: [unclosed\n", "Invalid YAML"),
        ("- just\n- a list\n", "must be a mapping"),
        ("plugins:\n  enabled: true\n", "unknown section 'plugins'"),
        ("ai:\n  temperature: 0.2\n", "unknown key ai.temperature"),
        ("ai: sonnet\n", "section 'ai' must be a mapping"),
        ("ai:\n  concurrency: true\n", "ai.concurrency must be int"),
        ("options:\n  max_file_size: big\n", "options.max_file_size must be int"),
        ("exclude:\n  patterns: ['*.snap', 3]\n", "exclude.patterns must be list"),
        ("trace:\n  enabled: 'yes'\n", "trace.enabled must be bool"),
    ],
)
def test_invalid_file_is_rejected(tmp_path: Path, text: str, message: str) -> None:
    path = _write_config(tmp_path, text)

    with pytest.raises(ConfigFileError, match=message):
        load_config_file(path)


def test_invalid_file_surfaces_through_settings(
    clean_env: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    _write_config(tmp_path, "ai:\n  timeout_seconds: soon\n")

    with pytest.raises(ValueError, match="ai.timeout_seconds must be int or float"):
        Settings.from_env(root=tmp_path)


def test_malformed_numeric_environment_value_names_the_variable(
    clean_env: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    clean_env.setenv("AGENTS_REVERSE_MAX_FILE_SIZE", "abc")

    with pytest.raises(ValueError, match="AGENTS_REVERSE_MAX_FILE_SIZE must be an integer"):
        Settings.from_env(root=tmp_path)

    clean_env.delenv("AGENTS_REVERSE_MAX_FILE_SIZE")
    clean_env.setenv("AGENTS_REVERSE_TIMEOUT_SECONDS", "soon")
    with pytest.raises(ValueError, match="AGENTS_REVERSE_TIMEOUT_SECONDS must be a number"):
        Settings.from_env(root=tmp_path)


def test_rendered_default_config_loads_back_to_defaults(tmp_path: Path) -> None:
    text = render_default_config(
        exclude_patterns=DEFAULT_EXCLUDE_PATTERNS,
        vendor_dirs=DEFAULT_VENDOR_DIRS,
        binary_extensions=DEFAULT_BINARY_EXTENSIONS,
        max_file_size=1024 * 1024,
        model="sonnet",
        timeout_seconds=300.0,
        max_retries=3,
        keep_runs=50,
    )
    path = _write_config(tmp_path, text)

    values = load_config_file(path)

    assert values["exclude"]["patterns"] == DEFAULT_EXCLUDE_PATTERNS
    assert values["exclude"]["vendor_dirs"] == DEFAULT_VENDOR_DIRS
    assert values["exclude"]["binary_extensions"] == DEFAULT_BINARY_EXTENSIONS
    assert values["options"] == {"max_file_size": 1024 * 1024, "respect_gitignore": True}
    assert values["ai"]["model"] == "sonnet"
    assert values["ai"]["timeout_seconds"] == 300
    assert "command" not in values["ai"]
    assert values["retry"] == {"max_retries": 3}
    assert values["trace"] == {"enabled": False, "keep_runs": 50}


def test_gitignore_entry_is_created_once(tmp_path: Path) -> None:
    assert ensure_gitignore_entry(tmp_path) is True
    assert ensure_gitignore_entry(tmp_path) is False

    assert (tmp_path / ".gitignore").read_text("utf-8") == "# agents-reverse\n*.sum\n"


def test_gitignore_entry_joins_existing_section(tmp_path: Path) -> None:
    gitignore = tmp_path / ".gitignore"
    gitignore.write_text("node_modules\n# agents-reverse\n.cache\n", "utf-8")

    assert ensure_gitignore_entry(tmp_path) is True

    assert gitignore.read_text("utf-8") == "node_modules\n# agents-reverse\n*.sum\n.cache\n"


def test_gitignore_entry_appends_section_after_unterminated_content(tmp_path: Path) -> None:
    gitignore = tmp_path / ".gitignore"
    gitignore.write_text("dist", "utf-8")

    assert ensure_gitignore_entry(tmp_path) is True

    assert gitignore.read_text("utf-8") == "dist\n\n# agents-reverse\n*.sum\n"


def test_existing_sum_pattern_leaves_gitignore_untouched(tmp_path: Path) -> None:
    gitignore = tmp_path / ".gitignore"
    gitignore.write_text("*.sum\n", "utf-8")

    assert ensure_gitignore_entry(tmp_path) is False
    assert gitignore.read_text("utf-8") == "*.sum\n"
