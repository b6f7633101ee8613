from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import asdict
from datetime import UTC, date, datetime, timedelta
from typing import Any

from sqlalchemy import create_engine, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shopledger.adapters.db.models import (
    Base,
    LineItemFactRow,
    OrderFactRow,
    SyncJobRow,
)
from shopledger.core.errors import (
    InvariantViolationError,
    JobNotFoundError,
    SinkWriteError,
)
from shopledger.core.protocols import (
    LINE_ITEM_CONFLICT_KEY,
    ORDER_CONFLICT_KEY,
    UpsertResult,
)
from shopledger.domain.entities import (
    FetchMode,
    JobStatus,
    LineItemFact,
    OrderFact,
    SyncJob,
    SyncWindow,
)

UPSERT_BATCH_SIZE = 500

# Columns never overwritten by an upsert.
_IMMUTABLE_COLUMNS = frozenset({"id", "synced_at"})

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _job_from_row(row: SyncJobRow) -> SyncJob:
    return SyncJob(
        id=row.id,
        tenant=row.tenant,
        window=SyncWindow(start=row.window_start, end=row.window_end),
        status=JobStatus(row.status),
        mode=FetchMode(row.mode),
        total_count=row.total_count,
        processed_count=row.processed_count,
        records_processed=row.records_processed,
        error_message=row.error_message,
        last_completed_chunk_end=row.last_completed_chunk_end,
        failed_chunks=tuple(c for c in (row.failed_chunks or "").split(",") if c),
        created_at=row.created_at,
        started_at=row.started_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
    )


def _columns(model: type[Base]) -> list[str]:
    return [c.name for c in model.__table__.columns]


class DB:
    """Database service layer: fact sink and sync job store."""

    def __init__(self, url: str, *, clock: Callable[[], datetime] = _utcnow) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///shopledger.db")
            clock: Source of naive-UTC timestamps for job bookkeeping
        """
        self._url = url
        self._engine = create_engine(url, echo=False)
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)
        self._clock = clock

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    # ------------------------------------------------------------------
    # Sink
    # ------------------------------------------------------------------

    def _insert(self, model: type[Base]) -> Any:
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise SinkWriteError(f"Upserts are not supported on dialect {dialect!r}")

    def _write(
        self,
        session: Session,
        model: type[OrderFactRow] | type[LineItemFactRow],
        rows: list[dict[str, Any]],
        conflict_key: tuple[str, ...],
    ) -> UpsertResult:
        table = model.__tablename__
        if not rows:
            return UpsertResult(table=table, written=0)

        columns = _columns(model)
        unknown = [c for c in conflict_key if c not in columns]
        if unknown:
            raise SinkWriteError(f"Unknown conflict columns for {table}: {unknown}")

        written = 0
        for offset in range(0, len(rows), UPSERT_BATCH_SIZE):
            batch = rows[offset : offset + UPSERT_BATCH_SIZE]
            stmt = self._insert(model).values(batch)
            update_cols = {
                name: stmt.excluded[name]
                for name in batch[0]
                if name not in conflict_key and name not in _IMMUTABLE_COLUMNS
            }
            # A refund date, once known, is never cleared by a later
            # write that lacks one.
            update_cols["refund_date"] = func.coalesce(
                stmt.excluded.refund_date, model.refund_date
            )
            update_cols["synced_at"] = func.current_timestamp()
            stmt = stmt.on_conflict_do_update(
                index_elements=list(conflict_key), set_=update_cols
            )
            session.execute(stmt)
            written += len(batch)
        return UpsertResult(table=table, written=written)

    def upsert_order_facts(
        self,
        records: Sequence[OrderFact],
        conflict_key: tuple[str, ...] = ORDER_CONFLICT_KEY,
    ) -> UpsertResult:
        """Insert or update order facts keyed on ``conflict_key``.

        Idempotent: replaying the same facts leaves the table unchanged.
        """
        rows = [asdict(record) for record in records]
        try:
            with self.session() as session:  # type: Session
                return self._write(session, OrderFactRow, rows, conflict_key)
        except SQLAlchemyError as e:
            raise SinkWriteError(f"Failed to upsert order facts: {e}") from e

    def upsert_line_item_facts(
        self,
        records: Sequence[LineItemFact],
        conflict_key: tuple[str, ...] = LINE_ITEM_CONFLICT_KEY,
    ) -> UpsertResult:
        rows = [asdict(record) for record in records]
        try:
            with self.session() as session:  # type: Session
                return self._write(session, LineItemFactRow, rows, conflict_key)
        except SQLAlchemyError as e:
            raise SinkWriteError(f"Failed to upsert line item facts: {e}") from e

    def upsert_facts(
        self,
        order_facts: Sequence[OrderFact],
        line_facts: Sequence[LineItemFact],
    ) -> tuple[UpsertResult, UpsertResult]:
        """Write one chunk's order and line facts in a single transaction.

        Either both batches are committed or neither is.
        """
        order_rows = [asdict(record) for record in order_facts]
        line_rows = [asdict(record) for record in line_facts]
        try:
            with self.session() as session:  # type: Session
                orders = self._write(
                    session, OrderFactRow, order_rows, ORDER_CONFLICT_KEY
                )
                lines = self._write(
                    session, LineItemFactRow, line_rows, LINE_ITEM_CONFLICT_KEY
                )
        except SQLAlchemyError as e:
            raise SinkWriteError(f"Failed to upsert chunk facts: {e}") from e
        return orders, lines

    def fetch_order_facts(self, tenant: str) -> list[OrderFactRow]:
        with self.session() as session:  # type: Session
            rows = list(
                session.scalars(
                    select(OrderFactRow)
                    .where(OrderFactRow.tenant == tenant)
                    .order_by(OrderFactRow.order_id)
                )
            )
            for row in rows:
                session.expunge(row)
            return rows

    def fetch_line_item_facts(
        self, tenant: str, order_id: str | None = None
    ) -> list[LineItemFactRow]:
        with self.session() as session:  # type: Session
            query = select(LineItemFactRow).where(LineItemFactRow.tenant == tenant)
            if order_id is not None:
                query = query.where(LineItemFactRow.order_id == order_id)
            rows = list(
                session.scalars(
                    query.order_by(LineItemFactRow.order_id, LineItemFactRow.sku)
                )
            )
            for row in rows:
                session.expunge(row)
            return rows

    # ------------------------------------------------------------------
    # Job store
    # ------------------------------------------------------------------

    def _load_job(self, session: Session, job_id: int) -> SyncJobRow:
        row = session.get(SyncJobRow, job_id)
        if row is None:
            raise JobNotFoundError(f"Sync job {job_id} not found")
        return row

    def _transition(self, row: SyncJobRow, target: JobStatus) -> None:
        current = JobStatus(row.status)
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise InvariantViolationError(
                f"Sync job {row.id} cannot move from {current.value} to {target.value}"
            )
        row.status = target.value
        row.updated_at = self._clock()

    def create(
        self, tenant: str, window: SyncWindow, mode: FetchMode, total_count: int
    ) -> SyncJob:
        """Create the job for ``(tenant, window)`` or reopen the existing one.

        An unfinished or failed job keeps its checkpoint and record count so
        the run resumes; a completed job starts over. Chunk progress and
        failures are reset either way.
        """
        now = self._clock()
        with self.session() as session:  # type: Session
            existing = session.scalars(
                select(SyncJobRow).where(
                    SyncJobRow.tenant == tenant,
                    SyncJobRow.window_start == window.start,
                    SyncJobRow.window_end == window.end,
                )
            ).first()

            if existing is not None:
                if existing.status == JobStatus.COMPLETED.value:
                    existing.last_completed_chunk_end = None
                    existing.records_processed = 0
                    existing.started_at = None
                existing.status = JobStatus.PENDING.value
                existing.mode = mode.value
                existing.total_count = total_count
                existing.processed_count = 0
                existing.failed_chunks = None
                existing.error_message = None
                existing.completed_at = None
                existing.updated_at = now
                session.flush()
                return _job_from_row(existing)

            row = SyncJobRow(
                tenant=tenant,
                window_start=window.start,
                window_end=window.end,
                mode=mode.value,
                status=JobStatus.PENDING.value,
                total_count=total_count,
                processed_count=0,
                records_processed=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            return _job_from_row(row)

    def start(self, job_id: int) -> SyncJob:
        with self.session() as session:  # type: Session
            row = self._load_job(session, job_id)
            self._transition(row, JobStatus.RUNNING)
            row.started_at = row.updated_at
            return _job_from_row(row)

    def advance(
        self,
        job_id: int,
        delta: int,
        *,
        records: int = 0,
        failed_chunk: str | None = None,
    ) -> SyncJob:
        if delta < 0 or records < 0:
            raise InvariantViolationError("Job progress can only move forward")
        with self.session() as session:  # type: Session
            row = self._load_job(session, job_id)
            row.processed_count = min(row.total_count, row.processed_count + delta)
            row.records_processed += records
            if failed_chunk:
                chunks = [c for c in (row.failed_chunks or "").split(",") if c]
                chunks.append(failed_chunk)
                row.failed_chunks = ",".join(chunks)
            row.updated_at = self._clock()
            return _job_from_row(row)

    def checkpoint(self, job_id: int, chunk_end: date) -> SyncJob:
        with self.session() as session:  # type: Session
            row = self._load_job(session, job_id)
            if (
                row.last_completed_chunk_end is None
                or chunk_end > row.last_completed_chunk_end
            ):
                row.last_completed_chunk_end = chunk_end
            row.updated_at = self._clock()
            return _job_from_row(row)

    def complete(self, job_id: int, message: str | None = None) -> SyncJob:
        with self.session() as session:  # type: Session
            row = self._load_job(session, job_id)
            self._transition(row, JobStatus.COMPLETED)
            row.error_message = message
            row.completed_at = row.updated_at
            return _job_from_row(row)

    def fail(self, job_id: int, message: str) -> SyncJob:
        with self.session() as session:  # type: Session
            row = self._load_job(session, job_id)
            self._transition(row, JobStatus.FAILED)
            row.error_message = message
            row.completed_at = row.updated_at
            return _job_from_row(row)

    def fail_stale(self, older_than: timedelta) -> list[SyncJob]:
        """Fail RUNNING jobs not updated within ``older_than``.

        A run that crashed or was killed never reaches ``complete`` or
        ``fail`` itself; this frees its window for a resumed run.
        """
        cutoff = self._clock() - older_than
        with self.session() as session:  # type: Session
            rows = list(
                session.scalars(
                    select(SyncJobRow)
                    .where(
                        SyncJobRow.status == JobStatus.RUNNING.value,
                        SyncJobRow.updated_at < cutoff,
                    )
                    .order_by(SyncJobRow.id)
                )
            )
            for row in rows:
                self._transition(row, JobStatus.FAILED)
                row.error_message = f"Stale: no progress for over {older_than}"
                row.completed_at = row.updated_at
            return [_job_from_row(row) for row in rows]

    def get(self, job_id: int) -> SyncJob:
        with self.session() as session:  # type: Session
            return _job_from_row(self._load_job(session, job_id))
