"""Domain models shared by change detection, generation, and run accounting."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class FailureKind(str, Enum):
    """Normalized failure kinds for one generation call."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    CLI_NOT_FOUND = "cli_not_found"
    PARSE_ERROR = "parse_error"
    SUBPROCESS_ERROR = "subprocess_error"


class ChangeStatus(str, Enum):
    """Version-control status of one path relative to the baseline."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class RunOutcome(str, Enum):
    """Aggregate outcome of one pipeline run."""

    FULL_SUCCESS = "full_success"
    PARTIAL_SUCCESS = "partial_success"
    TOTAL_FAILURE = "total_failure"
    NOTHING_TO_DO = "nothing_to_do"


@dataclass(slots=True, frozen=True)
class FileRecord:
    """Persisted fingerprint of one successfully summarized file."""

    path: str
    content_hash: str
    generated_at: datetime
    last_analyzed_commit: str | None = None


@dataclass(slots=True, frozen=True)
class RunRecord:
    """Append-only record of one completed run."""

    commit_hash: str | None
    completed_at: datetime
    files_analyzed: int
    files_skipped: int
    id: int | None = None


@dataclass(slots=True, frozen=True)
class FileChange:
    """One entry of a version-control diff."""

    path: str
    status: ChangeStatus
    old_path: str | None = None


@dataclass(slots=True)
class ChangeSet:
    """Changes between the persisted baseline and the current tree."""

    base_commit: str
    head_commit: str
    include_uncommitted: bool = False
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    renamed: list[FileChange] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    affected_directories: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.renamed or self.deleted)


@dataclass(slots=True, frozen=True)
class GenerationResult:
    """Backend-independent result of one generation call."""

    text: str
    model: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    cost_usd: float | None
    duration_ms: int
    exit_code: int


class GenerationFailure(RuntimeError):
    """Terminal failure of one generation call after retries."""

    def __init__(
        self,
        message: str,
        *,
        kind: FailureKind,
        attempts: int,
        duration_ms: int,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.attempts = attempts
        self.duration_ms = duration_ms

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.args[0]} (attempts={self.attempts})"
