"""SQLModel ORM tables for incremental generation state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class FileState(SQLModel, table=True):
    __tablename__ = "files"  # type: ignore[bad-override]

    path: str = Field(primary_key=True)
    content_hash: str
    sum_generated_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    last_analyzed_commit: str | None = Field(default=None)


class RunState(SQLModel, table=True):
    __tablename__ = "runs"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    commit_hash: str | None = Field(default=None, index=True)
    completed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    files_analyzed: int = Field(default=0)
    files_skipped: int = Field(default=0)
