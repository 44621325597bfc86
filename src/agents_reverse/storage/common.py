"""Timestamp and engine helpers for the state database."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine

_STATE_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def from_iso(value: str) -> datetime:
    """Parse an ISO timestamp; naive values are read as UTC."""

    return as_aware_utc(datetime.fromisoformat(value))


def as_naive_utc(value: datetime) -> datetime:
    """SQLite stores timestamps without an offset, always in UTC."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def as_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def build_state_engine(db_path: Path, *, busy_timeout_ms: int) -> Engine:
    """Engine for the state file, shared by the writer thread and readers."""

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        for pragma in _STATE_PRAGMAS:
            cursor.execute(pragma)
        cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
        cursor.close()

    return engine
