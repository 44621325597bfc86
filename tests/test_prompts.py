from __future__ import annotations

import allure

from agents_reverse.prompts import (
    ROOT_SYSTEM_PROMPTS,
    build_directory_prompt,
    build_file_prompt,
    build_root_prompt,
)

pytestmark = [
    allure.epic("Documentation Pipeline"),
    allure.feature("Prompts"),
]


def test_file_prompt_embeds_path_category_and_content() -> None:
    prompt = build_file_prompt(
        relative_path="src/utils.py",
        category="python",
        content="def helper():\n    return 1\n",
        prior_summary=None,
    )

    assert "`src/utils.py` (category: python)" in prompt
    assert "def helper():" in prompt
    assert "<previous-summary>" not in prompt


def test_file_prompt_includes_prior_summary_when_known() -> None:
    prompt = build_file_prompt(
        relative_path="a.py",
        category="python",
        content="A = 2",
        prior_summary="Defines A as 1.",
    )

    assert "<previous-summary>\nDefines A as 1.\n</previous-summary>" in prompt


def test_directory_prompt_lists_sections_and_local_notes() -> None:
    prompt = build_directory_prompt(
        relative_path="pkg",
        sections=[("a.py", "Summary of a.\n"), ("sub/AGENTS.md", "Sub doc")],
        local_notes="Keep APIs stable.\n",
    )

    assert prompt.startswith("Write AGENTS.md for the directory `pkg/`.")
    assert "## a.py\n\nSummary of a.\n" in prompt
    assert "## sub/AGENTS.md\n\nSub doc\n" in prompt
    assert "Keep APIs stable." in prompt
    assert "[AGENTS.local.md](./AGENTS.local.md)" in prompt


def test_directory_prompt_without_notes_has_no_notes_section() -> None:
    prompt = build_directory_prompt(relative_path="pkg", sections=[("a.py", "s")], local_notes=None)

    assert "User notes" not in prompt
    assert prompt.endswith("s\n")


def test_root_prompts_exist_for_both_documents() -> None:
    assert set(ROOT_SYSTEM_PROMPTS) == {"AGENTS.md", "ARCHITECTURE.md"}

    prompt = build_root_prompt(document_name="ARCHITECTURE.md", sections=[("src/AGENTS.md", "Src")])

    assert prompt.startswith("Write ARCHITECTURE.md for the project root.")
    assert "## src/AGENTS.md\n\nSrc" in prompt
