from __future__ import annotations

from datetime import date, timedelta

from shopledger.core.protocols import JobStore
from shopledger.domain.entities import FetchMode, SyncJob, SyncWindow


class JobTracker:
    """Progress bookkeeping for sync runs, delegated to a ``JobStore``.

    Holds no state of its own so a caller polling ``get`` from another
    process sees the same job the orchestrator is updating.
    """

    def __init__(self, store: JobStore) -> None:
        self._store = store

    def open(
        self, tenant: str, window: SyncWindow, mode: FetchMode, total_chunks: int
    ) -> SyncJob:
        job = self._store.create(tenant, window, mode, total_chunks)
        return self._store.start(job.id)

    def chunk_succeeded(
        self, job_id: int, chunk_end: date, records: int, *, checkpoint: bool
    ) -> SyncJob:
        job = self._store.advance(job_id, 1, records=records)
        if checkpoint:
            job = self._store.checkpoint(job_id, chunk_end)
        return job

    def chunk_failed(self, job_id: int, label: str) -> SyncJob:
        return self._store.advance(job_id, 1, failed_chunk=label)

    def skip(self, job_id: int, count: int) -> SyncJob:
        return self._store.advance(job_id, count)

    def complete(self, job_id: int, message: str | None = None) -> SyncJob:
        return self._store.complete(job_id, message)

    def fail(self, job_id: int, message: str) -> SyncJob:
        return self._store.fail(job_id, message)

    def fail_stale(self, older_than: timedelta) -> list[SyncJob]:
        return self._store.fail_stale(older_than)

    def get(self, job_id: int) -> SyncJob:
        return self._store.get(job_id)
