"""Post-phase consistency checks; findings are warnings, never failures."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from agents_reverse.artifacts import SUM_SUFFIX, is_generated_document
from agents_reverse.plan import DirectoryTask, FileTask

logger = logging.getLogger(__name__)

_SUM_REFERENCE = re.compile(r"[\w./-]+" + re.escape(SUM_SUFFIX) + r"\b")


@dataclass(slots=True, frozen=True)
class ValidationWarning:
    """One finding of a validation pass."""

    check: str
    path: str
    message: str


def check_missing_summaries(tasks: Iterable[FileTask]) -> list[ValidationWarning]:
    """File tasks whose ``.sum`` artifact does not exist after the file phase."""

    return [
        ValidationWarning(
            check="missing_summary",
            path=task.relative_path,
            message=f"summary {task.output_path.name} was not written",
        )
        for task in tasks
        if not task.output_path.exists()
    ]


def check_stale_references(tasks: Iterable[DirectoryTask]) -> list[ValidationWarning]:
    """Generated directory documents that mention ``.sum`` files no longer present."""

    warnings: list[ValidationWarning] = []
    for task in tasks:
        doc = task.output_path
        if not is_generated_document(doc):
            continue
        text = doc.read_text("utf-8", errors="replace")
        for reference in sorted(set(_SUM_REFERENCE.findall(text))):
            candidate = task.path / reference
            if not candidate.exists():
                warnings.append(
                    ValidationWarning(
                        check="stale_reference",
                        path=task.relative_path,
                        message=f"references missing {reference}",
                    ),
                )
    return warnings


def log_warnings(warnings: list[ValidationWarning]) -> None:
    for warning in warnings:
        logger.warning("Validation %s: %s %s", warning.check, warning.path, warning.message)
