"""Interfaces the sync core consumes."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Protocol, runtime_checkable

from shopledger.core.config import TenantConfig
from shopledger.core.errors import ErrorClassification
from shopledger.domain.entities import (
    FetchMode,
    LineItemFact,
    OrderFact,
    RawOrder,
    SyncJob,
    SyncWindow,
)

ORDER_CONFLICT_KEY: tuple[str, ...] = ("tenant", "order_id")
LINE_ITEM_CONFLICT_KEY: tuple[str, ...] = ("tenant", "order_id", "sku")


@dataclass(frozen=True, slots=True)
class UpsertResult:
    table: str
    written: int


@runtime_checkable
class DataSource(Protocol):
    """Upstream order source for one or more tenants."""

    def fetch_window(
        self,
        tenant: TenantConfig,
        start: datetime,
        end: datetime,
        mode: FetchMode,
    ) -> AsyncIterator[RawOrder]:
        """Yield every order created in ``[start, end)``."""
        ...

    def classify_error(self, err: BaseException) -> ErrorClassification: ...


@runtime_checkable
class Sink(Protocol):
    def upsert_order_facts(
        self,
        records: Sequence[OrderFact],
        conflict_key: tuple[str, ...] = ORDER_CONFLICT_KEY,
    ) -> UpsertResult: ...

    def upsert_line_item_facts(
        self,
        records: Sequence[LineItemFact],
        conflict_key: tuple[str, ...] = LINE_ITEM_CONFLICT_KEY,
    ) -> UpsertResult: ...

    def upsert_facts(
        self,
        order_facts: Sequence[OrderFact],
        line_facts: Sequence[LineItemFact],
    ) -> tuple[UpsertResult, UpsertResult]:
        """Write both batches atomically: all of them or none."""
        ...


@runtime_checkable
class JobStore(Protocol):
    def create(
        self, tenant: str, window: SyncWindow, mode: FetchMode, total_count: int
    ) -> SyncJob:
        """Create the job for ``(tenant, window)`` or reopen an unfinished one."""
        ...

    def start(self, job_id: int) -> SyncJob: ...

    def advance(
        self,
        job_id: int,
        delta: int,
        *,
        records: int = 0,
        failed_chunk: str | None = None,
    ) -> SyncJob: ...

    def checkpoint(self, job_id: int, chunk_end: date) -> SyncJob: ...

    def complete(self, job_id: int, message: str | None = None) -> SyncJob: ...

    def fail(self, job_id: int, message: str) -> SyncJob: ...

    def fail_stale(self, older_than: timedelta) -> list[SyncJob]: ...

    def get(self, job_id: int) -> SyncJob: ...
