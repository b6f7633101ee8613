from __future__ import annotations

import loguru
from loguru import logger


class FetchLogger:
    """Handles logging for cursor-paged order fetches."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def page(self, tenant: str, page: int, count: int, has_next: bool) -> None:
        self._logger.bind(tenant=tenant, page=page, count=count).debug(
            "Fetched page {} for {} ({} orders, more={})", page, tenant, count, has_next
        )

    def done(self, tenant: str, pages: int, orders: int) -> None:
        self._logger.bind(tenant=tenant, pages=pages, orders=orders).info(
            "Fetched {} orders for {} in {} page(s)", orders, tenant, pages
        )

    def skipped_order(self, tenant: str, order_id: str, error: Exception) -> None:
        self._logger.bind(tenant=tenant, order_id=order_id).warning(
            "Skipping malformed order {} for {}: {}", order_id, tenant, error
        )

    def line_items_truncated(self, tenant: str, order_id: str, limit: int) -> None:
        self._logger.bind(tenant=tenant, order_id=order_id).warning(
            "Order {} for {} reached the {} line item limit; lines may be missing",
            order_id,
            tenant,
            limit,
        )


class BulkJobLogger:
    """Handles logging for bulk export jobs."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def cancelling_stuck(self, tenant: str, job_id: str, status: str) -> None:
        self._logger.bind(tenant=tenant, bulk_id=job_id).warning(
            "Cancelling stuck bulk operation {} ({}) for {}", job_id, status, tenant
        )

    def submitted(self, tenant: str, job_id: str) -> None:
        self._logger.bind(tenant=tenant, bulk_id=job_id).info(
            "Submitted bulk operation {} for {}", job_id, tenant
        )

    def polled(self, tenant: str, job_id: str, status: str, polls: int) -> None:
        self._logger.bind(tenant=tenant, bulk_id=job_id, polls=polls).debug(
            "Bulk operation {} is {} after {} poll(s)", job_id, status, polls
        )

    def finished(
        self, tenant: str, job_id: str, status: str, object_count: int | None
    ) -> None:
        self._logger.bind(tenant=tenant, bulk_id=job_id, status=status).info(
            "Bulk operation {} finished with {} ({} objects)",
            job_id,
            status,
            object_count if object_count is not None else "?",
        )

    def timed_out(self, tenant: str, job_id: str, polls: int) -> None:
        self._logger.bind(tenant=tenant, bulk_id=job_id, polls=polls).error(
            "Bulk operation {} for {} timed out after {} poll(s); cancelling",
            job_id,
            tenant,
            polls,
        )

    def cancel_failed(self, tenant: str, job_id: str, error: Exception) -> None:
        self._logger.bind(tenant=tenant, bulk_id=job_id).warning(
            "Could not cancel timed-out bulk operation {} for {}: {}",
            job_id,
            tenant,
            error,
        )

    def orphan_lines(self, tenant: str, count: int) -> None:
        self._logger.bind(tenant=tenant, orphans=count).warning(
            "Dropped {} bulk line(s) for {} with no known parent order", count, tenant
        )

    def downloaded(self, tenant: str, lines: int, orders: int) -> None:
        self._logger.bind(tenant=tenant, lines=lines, orders=orders).info(
            "Downloaded {} JSONL line(s) for {} ({} orders)", lines, tenant, orders
        )

    def skipped_order(self, tenant: str, order_id: str, error: Exception) -> None:
        self._logger.bind(tenant=tenant, order_id=order_id).warning(
            "Skipping malformed bulk order {} for {}: {}", order_id, tenant, error
        )
