"""Prompt templates for file, directory, and root documentation tasks."""

from __future__ import annotations

FILE_SYSTEM_PROMPT = """\
You are documenting a source file for other engineers and coding agents.
Write a concise Markdown summary: purpose, main exports or entry points,
important behaviour, and dependencies on other files. Do not repeat the code.
Answer with the summary only.
"""

DIRECTORY_SYSTEM_PROMPT = """\
You are writing AGENTS.md for one directory of a codebase.
You receive summaries of the files in the directory and the documents of its
subdirectories. Describe the directory's role, group files by purpose, and
note conventions a contributor must follow. Answer with Markdown only.
"""

ROOT_SYSTEM_PROMPTS = {
    "AGENTS.md": """\
You are writing the root AGENTS.md of a codebase, the entry point for coding
agents. Synthesize the directory documents into a project overview: purpose,
architecture, key directories, and how to get started. Answer with Markdown only.
""",
    "ARCHITECTURE.md": """\
You are writing ARCHITECTURE.md for a codebase. From the directory documents,
describe the system design, component relationships, data flow, and the
patterns in use. Answer with Markdown only.
""",
}

_FILE_PROMPT = """\
Summarize the file `{relative_path}` (category: {category}).
{prior_section}
```
{content}
```
"""

_PRIOR_SECTION = """
The previous summary of this file is below; keep what is still accurate.

<previous-summary>
{prior_summary}
</previous-summary>
"""


def build_file_prompt(
    *,
    relative_path: str,
    category: str,
    content: str,
    prior_summary: str | None,
) -> str:
    prior_section = _PRIOR_SECTION.format(prior_summary=prior_summary) if prior_summary else ""
    return _FILE_PROMPT.format(
        relative_path=relative_path,
        category=category,
        prior_section=prior_section,
        content=content,
    )


def build_directory_prompt(
    *,
    relative_path: str,
    sections: list[tuple[str, str]],
    local_notes: str | None,
) -> str:
    """Prompt for one directory; ``sections`` pairs child names with their text."""

    lines = [f"Write AGENTS.md for the directory `{relative_path}/`.", ""]
    for name, body in sections:
        lines.extend([f"## {name}", "", body.strip(), ""])
    if local_notes:
        lines.extend(
            [
                "## User notes (AGENTS.local.md)",
                "",
                local_notes.strip(),
                "",
                "Reference [AGENTS.local.md](./AGENTS.local.md) for these notes.",
            ],
        )
    return "\n".join(lines).rstrip() + "\n"


def build_root_prompt(*, document_name: str, sections: list[tuple[str, str]]) -> str:
    lines = [f"Write {document_name} for the project root.", ""]
    for name, body in sections:
        lines.extend([f"## {name}", "", body.strip(), ""])
    return "\n".join(lines).rstrip() + "\n"
