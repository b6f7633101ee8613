"""Bulk export fetch strategy.

Submits an asynchronous export of a created-at range, polls it at a fixed
interval up to a hard timeout, then downloads the JSONL result and stitches
child records back under their parents.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import json
import math
from typing import Any

from pydantic import ValidationError

from shopledger.adapters.shopify.client import ShopifyClient
from shopledger.adapters.shopify.logger import BulkJobLogger
from shopledger.adapters.shopify.models import (
    BulkMutationPayload,
    BulkOperationNode,
    OrderNode,
)
from shopledger.adapters.shopify.queries import (
    BULK_CANCEL_MUTATION,
    BULK_POLL_QUERY,
    BULK_RUN_MUTATION,
    CURRENT_BULK_QUERY,
    bulk_orders_query,
)
from shopledger.core.errors import (
    BulkJobFailedError,
    JobTimeoutError,
    UpstreamError,
    UpstreamRequestError,
)
from shopledger.core.retry import SleepFn
from shopledger.domain.entities import RawOrder

POLL_INTERVAL_SECONDS = 10.0
MAX_POLL_ATTEMPTS = 360
CANCEL_SETTLE_POLLS = 6

ACTIVE_STATUSES = frozenset({"CREATED", "RUNNING", "CANCELING"})
TERMINAL_STATUSES = frozenset({"COMPLETED", "FAILED", "CANCELED", "EXPIRED"})

# Child record type -> field on the parent it belongs to.
CHILD_FIELDS = {
    "LineItem": "lineItems",
    "ShippingLine": "shippingLines",
    "RefundLineItem": "refundLineItems",
    "OrderTransaction": "transactions",
}


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PollOutcome:
    operation: BulkOperationNode
    polls: int
    timed_out: bool


@dataclass(frozen=True, slots=True)
class BulkReassembly:
    orders: list[dict[str, Any]]
    orphans: int = 0
    malformed: int = 0


# ---------------------------------------------------------------------------
# Reassembly
# ---------------------------------------------------------------------------


def record_type(record: dict[str, Any]) -> str | None:
    """Resolve a JSONL record's type from ``__typename`` or its gid."""
    typename = record.get("__typename")
    if typename:
        return str(typename)
    gid = record.get("id")
    if isinstance(gid, str) and gid.startswith("gid://shopify/"):
        return gid.split("/")[3].split("?")[0]
    return None


def reassemble_bulk_lines(lines: list[str]) -> BulkReassembly:
    """Rebuild nested orders from flattened bulk JSONL output.

    Top-level records are orders. Every other record carries ``__parentId``
    and is appended to the matching child list on its parent (an order, or
    a refund nested inside one). Records whose parent never appears, or
    whose type is unknown, are counted as orphans and dropped.
    """
    records: list[dict[str, Any]] = []
    malformed = 0
    for line in lines:
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            malformed += 1
            continue
        if isinstance(record, dict):
            records.append(record)
        else:
            malformed += 1

    orders: list[dict[str, Any]] = []
    index: dict[str, dict[str, Any]] = {}
    for record in records:
        if "__parentId" in record:
            continue
        orders.append(record)
        if record.get("id"):
            index[record["id"]] = record
        for refund in record.get("refunds") or []:
            if isinstance(refund, dict) and refund.get("id"):
                index[refund["id"]] = refund

    orphans = 0
    for record in records:
        parent_id = record.pop("__parentId", None)
        if parent_id is None:
            continue
        parent = index.get(parent_id)
        field = CHILD_FIELDS.get(record_type(record) or "")
        if parent is None or field is None:
            orphans += 1
            continue
        children = parent.get(field)
        if not isinstance(children, list):
            children = []
            parent[field] = children
        children.append(record)

    return BulkReassembly(orders=orders, orphans=orphans, malformed=malformed)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class BulkJobRunner:
    """Runs one bulk export per call. Upstream allows one job per shop."""

    def __init__(
        self,
        client: ShopifyClient,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        timeout: float = POLL_INTERVAL_SECONDS * MAX_POLL_ATTEMPTS,
        sleep: SleepFn = asyncio.sleep,
        bulk_logger: BulkJobLogger | None = None,
    ) -> None:
        if poll_interval <= 0:
            msg = "poll_interval must be positive"
            raise ValueError(msg)
        self._client = client
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._sleep = sleep
        self._logger = bulk_logger or BulkJobLogger()

    @property
    def max_polls(self) -> int:
        return max(1, math.ceil(self._timeout / self._poll_interval))

    @property
    def _tenant(self) -> str:
        return self._client.tenant.tenant_id

    # Job control ---------------------------------------------------------

    async def current_operation(self) -> BulkOperationNode | None:
        data = await self._client.execute(CURRENT_BULK_QUERY, operation="bulk_current")
        current = data.get("currentBulkOperation")
        return BulkOperationNode.parse(current) if current else None

    async def cancel(self, operation_id: str) -> None:
        data = await self._client.execute(
            BULK_CANCEL_MUTATION, {"id": operation_id}, operation="bulk_cancel"
        )
        payload = BulkMutationPayload.parse(data.get("bulkOperationCancel") or {})
        if payload.user_errors:
            messages = "; ".join(e.message for e in payload.user_errors)
            raise UpstreamRequestError(
                f"Could not cancel bulk operation {operation_id}: {messages}"
            )

    async def cancel_stuck(self) -> None:
        """Cancel a still-active prior job and wait briefly for it to settle."""
        current = await self.current_operation()
        if current is None or current.status not in ACTIVE_STATUSES:
            return
        if current.status != "CANCELING":
            self._logger.cancelling_stuck(self._tenant, current.id, current.status)
            await self.cancel(current.id)
        for _ in range(CANCEL_SETTLE_POLLS):
            await self._sleep(self._poll_interval)
            current = await self.current_operation()
            if current is None or current.status not in ACTIVE_STATUSES:
                return
        raise UpstreamRequestError(
            f"Prior bulk operation {current.id} for {self._tenant} did not stop"
        )

    async def submit(self, query: str) -> str:
        data = await self._client.execute(
            BULK_RUN_MUTATION, {"query": query}, operation="bulk_submit"
        )
        payload = BulkMutationPayload.parse(data.get("bulkOperationRunQuery") or {})
        if payload.user_errors:
            messages = "; ".join(e.message for e in payload.user_errors)
            raise UpstreamRequestError(f"Bulk submit rejected: {messages}")
        if payload.bulk_operation is None:
            raise UpstreamRequestError("Bulk submit returned no operation")
        self._logger.submitted(self._tenant, payload.bulk_operation.id)
        return payload.bulk_operation.id

    async def fetch_status(self, operation_id: str) -> BulkOperationNode:
        data = await self._client.execute(
            BULK_POLL_QUERY, {"id": operation_id}, operation="bulk_poll"
        )
        node = data.get("node")
        if not node:
            raise UpstreamRequestError(f"Bulk operation {operation_id} not found")
        return BulkOperationNode.parse(node)

    async def poll(self, operation_id: str) -> PollOutcome:
        """Poll until a terminal status or the poll budget runs out.

        Every non-terminal poll is followed by one interval, so a timeout is
        only reported once the full ``timeout`` has elapsed.
        """
        max_polls = self.max_polls
        for polls in range(1, max_polls + 1):
            operation = await self.fetch_status(operation_id)
            self._logger.polled(self._tenant, operation_id, operation.status, polls)
            if operation.status in TERMINAL_STATUSES:
                return PollOutcome(operation=operation, polls=polls, timed_out=False)
            await self._sleep(self._poll_interval)
        return PollOutcome(operation=operation, polls=max_polls, timed_out=True)

    # Public API ----------------------------------------------------------

    async def run(self, start: datetime, end: datetime) -> list[RawOrder]:
        """Export, download and parse every order created in ``[start, end)``.

        Raises:
            JobTimeoutError: The job was still active after the poll budget.
            BulkJobFailedError: The job ended FAILED, CANCELED or EXPIRED.
        """
        await self.cancel_stuck()
        operation_id = await self.submit(bulk_orders_query(start, end))

        outcome = await self.poll(operation_id)
        if outcome.timed_out:
            self._logger.timed_out(self._tenant, operation_id, outcome.polls)
            try:
                await self.cancel(operation_id)
            except UpstreamError as e:
                self._logger.cancel_failed(self._tenant, operation_id, e)
            raise JobTimeoutError(
                f"Bulk operation {operation_id} still {outcome.operation.status} "
                f"after {outcome.polls} poll(s)"
            )

        operation = outcome.operation
        self._logger.finished(
            self._tenant, operation_id, operation.status, operation.object_count
        )
        if operation.status != "COMPLETED":
            raise BulkJobFailedError(
                f"Bulk operation {operation_id} ended {operation.status}"
                + (f" ({operation.error_code})" if operation.error_code else ""),
                error_code=operation.error_code,
            )

        if not operation.url:
            return []

        lines = await self._client.download_lines(operation.url)
        reassembly = reassemble_bulk_lines(lines)
        if reassembly.orphans or reassembly.malformed:
            self._logger.orphan_lines(
                self._tenant, reassembly.orphans + reassembly.malformed
            )

        orders: list[RawOrder] = []
        for record in reassembly.orders:
            try:
                orders.append(OrderNode.parse(record).to_raw_order())
            except ValidationError as e:
                self._logger.skipped_order(self._tenant, str(record.get("id")), e)
        self._logger.downloaded(self._tenant, len(lines), len(orders))
        return orders
