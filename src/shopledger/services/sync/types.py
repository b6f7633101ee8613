"""Value types for chunked sync runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from shopledger.domain.entities import JobStatus


@dataclass(frozen=True, slots=True)
class ChunkSpec:
    """A sub-window of tenant-local days with its UTC fetch bounds.

    ``start_day``/``end_day`` are inclusive local days; ``start``/``end`` are
    the half-open UTC range ``[start, end)`` sent upstream.
    """

    index: int
    start_day: date
    end_day: date
    start: datetime
    end: datetime

    @property
    def label(self) -> str:
        return f"{self.start_day.isoformat()}..{self.end_day.isoformat()}"


@dataclass(frozen=True, slots=True)
class ChunkResult:
    chunk: ChunkSpec
    orders: int = 0
    order_facts: int = 0
    line_facts: int = 0
    issues: int = 0
    attempts: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class SyncSummary:
    """Outcome of one ``run_sync`` call.

    ``processed`` counts upstream orders written. ``skipped_chunks`` were
    already complete from a previous run; ``unprocessed_chunks`` were never
    started because the window timeout fired.
    """

    tenant: str
    job_id: int
    status: JobStatus
    processed: int
    failed_chunks: list[str] = field(default_factory=list)
    duration_ms: int = 0
    skipped_chunks: list[str] = field(default_factory=list)
    unprocessed_chunks: list[str] = field(default_factory=list)
    timed_out: bool = False
    chunks: list[ChunkResult] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.status is JobStatus.COMPLETED and bool(self.failed_chunks)
