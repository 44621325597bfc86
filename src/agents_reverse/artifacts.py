"""Reading and writing generated documentation artifacts.

Per-file summaries live next to their source as ``<file>.sum`` with a small
frontmatter header. Directory and root documents carry ``GENERATED_MARKER`` on
their first line; a document without it is treated as hand-written and is
never overwritten or deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from agents_reverse.storage.common import from_iso

logger = logging.getLogger(__name__)

SUM_SUFFIX = ".sum"
DIRECTORY_DOC_NAME = "AGENTS.md"
LOCAL_DOC_NAME = "AGENTS.local.md"
ROOT_POINTER_NAME = "CLAUDE.md"
ARCHITECTURE_DOC_NAME = "ARCHITECTURE.md"
GENERATED_MARKER = "<!-- Generated by agents-reverse -->"
GENERATED_FILE_NAMES = frozenset(
    {DIRECTORY_DOC_NAME, LOCAL_DOC_NAME, ROOT_POINTER_NAME, ARCHITECTURE_DOC_NAME},
)

_ROOT_POINTER_CONTENT = """# CLAUDE.md

See [AGENTS.md](./AGENTS.md) for codebase documentation.

The documentation is maintained in AGENTS.md files throughout the codebase.
"""


class WriteOutcome(str, Enum):
    """What happened when a generated document was written."""

    WRITTEN = "written"
    MOVED_USER_FILE = "moved_user_file"
    PRESERVED_USER_FILE = "preserved_user_file"


@dataclass(slots=True, frozen=True)
class SumFile:
    """Parsed ``.sum`` artifact."""

    summary: str
    file_type: str
    generated_at: datetime
    content_hash: str
    last_analyzed_commit: str | None = None


def sum_path_for(path: Path) -> Path:
    return path.with_name(path.name + SUM_SUFFIX)


def is_generated_artifact_name(name: str) -> bool:
    return name in GENERATED_FILE_NAMES or name.endswith(SUM_SUFFIX)


def write_sum_file(path: Path, sum_file: SumFile) -> Path:
    """Write the summary of ``path`` and return the artifact path."""

    target = sum_path_for(path)
    header = [
        "---",
        f"file_type: {sum_file.file_type}",
        f"generated_at: {sum_file.generated_at.isoformat()}",
        f"content_hash: {sum_file.content_hash}",
    ]
    if sum_file.last_analyzed_commit:
        header.append(f"last_analyzed_commit: {sum_file.last_analyzed_commit}")
    header.append("---")
    target.write_text("\n".join(header) + "\n\n" + sum_file.summary.strip() + "\n", "utf-8")
    return target


def read_sum_file(path: Path) -> SumFile | None:
    """Read the ``.sum`` artifact of ``path``; ``None`` if absent or malformed."""

    target = sum_path_for(path)
    try:
        text = target.read_text("utf-8")
    except FileNotFoundError:
        return None
    except OSError:
        logger.warning("Could not read %s", target, exc_info=True)
        return None

    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return None
    fields: dict[str, str] = {}
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            body = "\n".join(lines[index + 1 :]).strip()
            break
        key, _, value = line.partition(":")
        fields[key.strip()] = value.strip()
    else:
        return None

    try:
        generated_at = from_iso(fields["generated_at"])
        content_hash = fields["content_hash"]
    except (KeyError, ValueError):
        return None
    return SumFile(
        summary=body,
        file_type=fields.get("file_type", "generic"),
        generated_at=generated_at,
        content_hash=content_hash,
        last_analyzed_commit=fields.get("last_analyzed_commit") or None,
    )


def is_generated_document(path: Path) -> bool:
    """True when ``path`` exists and starts with the generated marker."""

    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            head = handle.read(len(GENERATED_MARKER) + 64)
    except FileNotFoundError:
        return False
    return head.lstrip().startswith(GENERATED_MARKER)


def write_generated_document(
    path: Path,
    content: str,
    *,
    preserve_as: str | None = None,
) -> WriteOutcome:
    """Write a marker-tagged document without clobbering a hand-written one.

    A hand-written file at ``path`` is moved to ``preserve_as`` (in the same
    directory) when that name is free; otherwise it is left untouched and
    nothing is written.
    """

    outcome = WriteOutcome.WRITTEN
    if path.exists() and not is_generated_document(path):
        backup = path.with_name(preserve_as) if preserve_as else None
        if backup is None or backup.exists():
            logger.info("Keeping hand-written %s", path)
            return WriteOutcome.PRESERVED_USER_FILE
        path.rename(backup)
        logger.info("Moved hand-written %s to %s", path, backup.name)
        outcome = WriteOutcome.MOVED_USER_FILE
    path.write_text(f"{GENERATED_MARKER}\n\n{content.strip()}\n", "utf-8")
    return outcome


def write_directory_doc(directory: Path, content: str) -> WriteOutcome:
    return write_generated_document(
        directory / DIRECTORY_DOC_NAME,
        content,
        preserve_as=LOCAL_DOC_NAME,
    )


def read_local_notes(directory: Path) -> str | None:
    """User-authored notes kept alongside a generated ``AGENTS.md``."""

    local = directory / LOCAL_DOC_NAME
    try:
        return local.read_text("utf-8")
    except FileNotFoundError:
        pass
    doc = directory / DIRECTORY_DOC_NAME
    if doc.exists() and not is_generated_document(doc):
        return doc.read_text("utf-8", errors="replace")
    return None


def read_generated_body(path: Path) -> str | None:
    """Generated document body without the marker line."""

    try:
        text = path.read_text("utf-8", errors="replace")
    except FileNotFoundError:
        return None
    stripped = text.lstrip()
    if stripped.startswith(GENERATED_MARKER):
        return stripped[len(GENERATED_MARKER) :].strip()
    return text.strip()


def write_root_pointer(root: Path) -> WriteOutcome:
    """Write ``CLAUDE.md`` pointing at the root ``AGENTS.md``."""

    return write_generated_document(root / ROOT_POINTER_NAME, _ROOT_POINTER_CONTENT)
