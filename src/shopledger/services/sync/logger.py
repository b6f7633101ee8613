from __future__ import annotations

import loguru
from loguru import logger

from shopledger.domain.entities import DataQualityIssue, JobStatus


class SyncLogger:
    """Handles all logging for the sync orchestrator."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def job_started(
        self, tenant: str, job_id: int, chunks: int, skipped: int
    ) -> None:
        """Log start of a (tenant, window) run."""
        self._logger.bind(tenant=tenant, job_id=job_id, chunks=chunks).info(
            "Starting sync job {} for {}: {} chunk(s), {} already done",
            job_id,
            tenant,
            chunks,
            skipped,
        )

    def chunk_start(self, tenant: str, label: str) -> None:
        self._logger.bind(tenant=tenant, chunk=label).info(
            "Syncing {} chunk {}", tenant, label
        )

    def chunk_complete(
        self, tenant: str, label: str, orders: int, order_facts: int, line_facts: int
    ) -> None:
        """Log a chunk whose facts were written."""
        self._logger.bind(
            tenant=tenant, chunk=label, orders=orders, line_facts=line_facts
        ).info(
            "Chunk {} for {} done: {} orders -> {} order facts, {} line facts",
            label,
            tenant,
            orders,
            order_facts,
            line_facts,
        )

    def chunk_failed(self, tenant: str, label: str, error: BaseException) -> None:
        self._logger.bind(tenant=tenant, chunk=label).error(
            "Chunk {} for {} failed: {}: {}", label, tenant, type(error).__name__, error
        )

    def data_quality(self, tenant: str, issue: DataQualityIssue) -> None:
        """Log an upstream inconsistency that was skipped."""
        error = issue.as_error()
        self._logger.bind(
            tenant=tenant,
            order_id=error.order_id,
            line_ref=error.line_ref,
            error_type=type(error).__name__,
        ).warning("Data quality issue on order {}: {}", error.order_id, error)

    def window_timed_out(self, tenant: str, remaining: int) -> None:
        self._logger.bind(tenant=tenant, remaining=remaining).error(
            "Window timeout for {}; {} chunk(s) not started", tenant, remaining
        )

    def invariant_violation(self, tenant: str, error: BaseException) -> None:
        self._logger.bind(tenant=tenant).critical(
            "Stopping sync for {}: {}", tenant, error
        )

    def job_cancelled(self, tenant: str, job_id: int) -> None:
        self._logger.bind(tenant=tenant, job_id=job_id).warning(
            "Sync job {} for {} cancelled; marked failed", job_id, tenant
        )

    def stale_job_failed(self, tenant: str, job_id: int) -> None:
        self._logger.bind(tenant=tenant, job_id=job_id).warning(
            "Sync job {} for {} stopped reporting progress; marked failed",
            job_id,
            tenant,
        )

    def job_finished(
        self,
        tenant: str,
        job_id: int,
        status: JobStatus,
        processed: int,
        failed_chunks: int,
        duration_ms: int,
    ) -> None:
        """Log summary of a finished run."""
        self._logger.bind(
            tenant=tenant,
            job_id=job_id,
            status=status.value,
            processed=processed,
            failed_chunks=failed_chunks,
        ).info(
            "Sync job {} for {} {}: {} orders, {} failed chunk(s) in {}ms",
            job_id,
            tenant,
            status.value,
            processed,
            failed_chunks,
            duration_ms,
        )
