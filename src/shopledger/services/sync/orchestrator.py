"""Chunked sync of one tenant's date window into the fact sink."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import timedelta
import time

from shopledger.core.config import SyncSettings, TenantConfig, TenantRegistry
from shopledger.core.errors import ConfigurationError, InvariantViolationError
from shopledger.core.protocols import DataSource, JobStore, Sink
from shopledger.core.retry import RetryPolicy, SleepFn, with_retry
from shopledger.domain.builder import build_facts
from shopledger.domain.dedup import dedupe_by_key
from shopledger.domain.entities import (
    FetchMode,
    LineItemFact,
    OrderFact,
    RawOrder,
    SyncJob,
    SyncWindow,
)
from shopledger.services.sync.chunks import split_window
from shopledger.services.sync.jobs import JobTracker
from shopledger.services.sync.logger import SyncLogger
from shopledger.services.sync.types import ChunkResult, ChunkSpec, SyncSummary


class SyncOrchestrator:
    """Drives tenants through date windows: fetch, build, dedupe, upsert.

    Chunks of one tenant run strictly in sequence; ``run_many`` runs
    different tenants concurrently.
    """

    def __init__(
        self,
        registry: TenantRegistry,
        source: DataSource,
        sink: Sink,
        job_store: JobStore,
        settings: SyncSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        sync_logger: SyncLogger | None = None,
    ) -> None:
        self._registry = registry
        self._source = source
        self._sink = sink
        self._jobs = JobTracker(job_store)
        self._settings = settings or SyncSettings()
        self._clock = clock
        self._sleep = sleep
        self._logger = sync_logger or SyncLogger()
        self._chunk_retry = RetryPolicy(
            max_attempts=self._settings.max_attempts,
            base_delay=self._settings.backoff_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_sync(
        self,
        tenant_id: str,
        window: SyncWindow,
        chunk_size_days: int | None = None,
        *,
        mode: FetchMode = FetchMode.PAGINATED,
    ) -> SyncSummary:
        """Sync every chunk of ``window`` for one tenant.

        Resumes after the job's last checkpoint when an earlier run of the
        same window did not finish. Failed chunks are reported in the
        summary; they never abort the window.

        Raises:
            ConfigurationError: Unknown tenant or invalid window.
            InvariantViolationError: A builder invariant was broken; the job
                is marked failed before re-raising.
            asyncio.CancelledError: The caller cancelled the run; the job is
                marked failed before re-raising.
        """
        tenant = self._registry.resolve(tenant_id)
        chunk_days = (
            self._settings.chunk_days if chunk_size_days is None else chunk_size_days
        )
        chunks = split_window(window, chunk_days, tenant.zone)

        started = self._clock()
        timeout = self._settings.window_timeout_seconds
        deadline = started + timeout if timeout is not None else None

        job = self._jobs.open(tenant.tenant_id, window, mode, len(chunks))
        checkpoint = job.last_completed_chunk_end
        skipped = [
            c for c in chunks if checkpoint is not None and c.end_day <= checkpoint
        ]
        pending = chunks[len(skipped) :]
        if skipped:
            self._jobs.skip(job.id, len(skipped))
        self._logger.job_started(tenant.tenant_id, job.id, len(chunks), len(skipped))

        results: list[ChunkResult] = []
        unprocessed: list[ChunkSpec] = []
        contiguous = True
        try:
            for position, chunk in enumerate(pending):
                if deadline is not None and self._clock() >= deadline:
                    unprocessed = pending[position:]
                    self._logger.window_timed_out(tenant.tenant_id, len(unprocessed))
                    break

                result = await self._run_chunk(tenant, chunk, mode)
                results.append(result)
                if result.ok:
                    self._jobs.chunk_succeeded(
                        job.id, chunk.end_day, result.orders, checkpoint=contiguous
                    )
                else:
                    contiguous = False
                    self._jobs.chunk_failed(job.id, chunk.label)
        except InvariantViolationError as e:
            self._logger.invariant_violation(tenant.tenant_id, e)
            self._jobs.fail(job.id, f"{type(e).__name__}: {e}")
            raise
        except asyncio.CancelledError:
            self._logger.job_cancelled(tenant.tenant_id, job.id)
            self._jobs.fail(job.id, "Cancelled")
            raise

        failed = [r.chunk.label for r in results if not r.ok]
        timed_out = bool(unprocessed)
        final = self._finish(job, results, failed, timed_out)

        duration_ms = int((self._clock() - started) * 1000)
        processed = sum(r.orders for r in results if r.ok)
        self._logger.job_finished(
            tenant.tenant_id, job.id, final.status, processed, len(failed), duration_ms
        )
        return SyncSummary(
            tenant=tenant.tenant_id,
            job_id=job.id,
            status=final.status,
            processed=processed,
            failed_chunks=failed,
            duration_ms=duration_ms,
            skipped_chunks=[c.label for c in skipped],
            unprocessed_chunks=[c.label for c in unprocessed],
            timed_out=timed_out,
            chunks=results,
        )

    async def run_many(
        self,
        tenant_ids: Sequence[str],
        window: SyncWindow,
        chunk_size_days: int | None = None,
        *,
        mode: FetchMode = FetchMode.PAGINATED,
    ) -> dict[str, SyncSummary]:
        """Run several tenants concurrently, one task per tenant.

        Every tenant id is resolved before any work starts, so an unknown
        tenant fails the call without side effects.
        """
        if len(set(tenant_ids)) != len(tenant_ids):
            raise ConfigurationError("Each tenant may appear only once per run")
        for tenant_id in tenant_ids:
            self._registry.resolve(tenant_id)

        semaphore = asyncio.Semaphore(self._settings.max_concurrent_tenants)

        async def run_one(tenant_id: str) -> SyncSummary:
            async with semaphore:
                return await self.run_sync(
                    tenant_id, window, chunk_size_days, mode=mode
                )

        summaries = await asyncio.gather(*(run_one(t) for t in tenant_ids))
        return dict(zip(tenant_ids, summaries, strict=True))

    def get_job_status(self, job_id: int) -> SyncJob:
        return self._jobs.get(job_id)

    def fail_stale_jobs(self, older_than: timedelta) -> list[SyncJob]:
        """Mark runs that stopped reporting progress as failed."""
        stale = self._jobs.fail_stale(older_than)
        for job in stale:
            self._logger.stale_job_failed(job.tenant, job.id)
        return stale

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def _run_chunk(
        self, tenant: TenantConfig, chunk: ChunkSpec, mode: FetchMode
    ) -> ChunkResult:
        """Fetch, build and write one chunk.

        Nothing is written until every order in the chunk has been fetched
        and built. Order and line facts are then committed together, so a
        failed chunk leaves no partial facts behind.
        """
        self._logger.chunk_start(tenant.tenant_id, chunk.label)
        attempts = 0

        async def fetch() -> list[RawOrder]:
            nonlocal attempts
            attempts += 1
            return [
                order
                async for order in self._source.fetch_window(
                    tenant, chunk.start, chunk.end, mode
                )
            ]

        try:
            orders = await with_retry(
                fetch,
                self._chunk_retry,
                classify=self._source.classify_error,
                sleep=self._sleep,
                operation=f"{tenant.tenant_id} chunk {chunk.label}",
            )

            order_facts: list[OrderFact] = []
            line_facts: list[LineItemFact] = []
            issues = 0
            for raw in orders:
                built = build_facts(
                    raw, tenant, ledger_currency=self._settings.ledger_currency
                )
                order_facts.append(built.order)
                line_facts.extend(built.lines)
                for issue in built.issues:
                    issues += 1
                    self._logger.data_quality(tenant.tenant_id, issue)

            order_facts = dedupe_by_key(order_facts)
            line_facts = dedupe_by_key(line_facts)

            self._sink.upsert_facts(order_facts, line_facts)
        except InvariantViolationError:
            raise
        except Exception as e:
            self._logger.chunk_failed(tenant.tenant_id, chunk.label, e)
            return ChunkResult(
                chunk=chunk,
                attempts=attempts,
                error=f"{type(e).__name__}: {e}",
            )

        self._logger.chunk_complete(
            tenant.tenant_id,
            chunk.label,
            len(orders),
            len(order_facts),
            len(line_facts),
        )
        return ChunkResult(
            chunk=chunk,
            orders=len(order_facts),
            order_facts=len(order_facts),
            line_facts=len(line_facts),
            issues=issues,
            attempts=attempts,
        )

    def _finish(
        self,
        job: SyncJob,
        results: list[ChunkResult],
        failed: list[str],
        timed_out: bool,
    ) -> SyncJob:
        if timed_out:
            return self._jobs.fail(
                job.id,
                "Window timeout reached"
                + (f"; failed chunks: {', '.join(failed)}" if failed else ""),
            )
        if results and len(failed) == len(results):
            return self._jobs.fail(
                job.id, f"All {len(failed)} chunk(s) failed: {', '.join(failed)}"
            )
        if failed:
            return self._jobs.complete(
                job.id, f"Partial success; failed chunks: {', '.join(failed)}"
            )
        return self._jobs.complete(job.id)
