"""Incremental state repository backed by SQLModel + SQLite."""

from __future__ import annotations

from pathlib import Path

from sqlmodel import Session, col, select

from agents_reverse.models import FileRecord, RunRecord
from agents_reverse.storage.alembic_runner import upgrade_head
from agents_reverse.storage.common import as_aware_utc, as_naive_utc, build_state_engine
from agents_reverse.storage.sqlmodel_models import FileState, RunState


class StateRepository:
    """Persistence facade for file fingerprints and run history."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = build_state_engine(db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    def get_file(self, path: str) -> FileRecord | None:
        with Session(self.engine) as session:
            row = session.get(FileState, path)
            return _to_file_record(row) if row is not None else None

    def list_files(self) -> list[FileRecord]:
        with Session(self.engine) as session:
            rows = session.exec(select(FileState).order_by(col(FileState.path))).all()
            return [_to_file_record(row) for row in rows]

    def upsert_file(self, record: FileRecord) -> None:
        """Insert or replace the fingerprint of one successfully summarized file."""

        with Session(self.engine) as session:
            row = session.get(FileState, record.path)
            if row is None:
                row = FileState(
                    path=record.path,
                    content_hash=record.content_hash,
                    sum_generated_at=as_naive_utc(record.generated_at),
                    last_analyzed_commit=record.last_analyzed_commit,
                )
            else:
                row.content_hash = record.content_hash
                row.sum_generated_at = as_naive_utc(record.generated_at)
                row.last_analyzed_commit = record.last_analyzed_commit
            session.add(row)
            session.commit()

    def delete_file(self, path: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(FileState, path)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def record_run(self, record: RunRecord) -> RunRecord:
        """Append a run to the history and return it with its id."""

        with Session(self.engine) as session:
            row = RunState(
                commit_hash=record.commit_hash,
                completed_at=as_naive_utc(record.completed_at),
                files_analyzed=record.files_analyzed,
                files_skipped=record.files_skipped,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_run_record(row)

    def last_run(self) -> RunRecord | None:
        """Latest run by sequence, the baseline of the next incremental run."""

        with Session(self.engine) as session:
            row = session.exec(select(RunState).order_by(col(RunState.id).desc()).limit(1)).first()
            return _to_run_record(row) if row is not None else None

    def list_runs(self, *, limit: int = 20) -> list[RunRecord]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(RunState).order_by(col(RunState.id).desc()).limit(limit),
            ).all()
            return [_to_run_record(row) for row in rows]


def _to_file_record(row: FileState) -> FileRecord:
    return FileRecord(
        path=row.path,
        content_hash=row.content_hash,
        generated_at=as_aware_utc(row.sum_generated_at),
        last_analyzed_commit=row.last_analyzed_commit,
    )


def _to_run_record(row: RunState) -> RunRecord:
    return RunRecord(
        id=row.id,
        commit_hash=row.commit_hash,
        completed_at=as_aware_utc(row.completed_at),
        files_analyzed=row.files_analyzed,
        files_skipped=row.files_skipped,
    )
