"""Domain entities: transient upstream orders and persisted financial facts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
import enum

from shopledger.core.errors import UpstreamDataQualityError

# ---------------------------------------------------------------------------
# Upstream (transient)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawTaxLine:
    """A tax line as reported upstream; ``amount`` covers the whole line."""

    rate: Decimal
    amount: Decimal


@dataclass(frozen=True, slots=True)
class RawLineItem:
    line_id: str
    sku: str | None
    quantity: int
    original_unit_price: Decimal
    discounted_unit_price: Decimal
    tax_lines: tuple[RawTaxLine, ...] = ()
    product_title: str = ""
    variant_title: str = ""

    @property
    def tax_amount(self) -> Decimal:
        return sum((tl.amount for tl in self.tax_lines), Decimal("0"))

    @property
    def tax_rate(self) -> Decimal:
        return sum((tl.rate for tl in self.tax_lines), Decimal("0"))


@dataclass(frozen=True, slots=True)
class RawShippingLine:
    price: Decimal
    tax_lines: tuple[RawTaxLine, ...] = ()

    @property
    def tax_amount(self) -> Decimal:
        return sum((tl.amount for tl in self.tax_lines), Decimal("0"))


@dataclass(frozen=True, slots=True)
class RawRefundLine:
    """One refunded line within a refund event.

    ``line_ref`` points at ``RawLineItem.line_id``; ``price_at_refund`` is the
    unit price charged for the line at refund time.
    """

    line_ref: str | None
    quantity: int
    price_at_refund: Decimal
    sku: str | None = None


@dataclass(frozen=True, slots=True)
class RawRefund:
    created_at: datetime
    total_refunded_amount: Decimal
    lines: tuple[RawRefundLine, ...] = ()
    processed_at: datetime | None = None
    refund_id: str | None = None

    @property
    def effective_date(self) -> datetime:
        """Settlement timestamp when known, else the event's creation time."""
        return self.processed_at or self.created_at


@dataclass(frozen=True, slots=True)
class RawOrder:
    order_id: str
    created_at: datetime
    currency: str
    taxes_included: bool
    line_items: tuple[RawLineItem, ...] = ()
    shipping_lines: tuple[RawShippingLine, ...] = ()
    total_discounts: Decimal = Decimal("0")
    original_total: Decimal = Decimal("0")
    current_total: Decimal = Decimal("0")
    refunds: tuple[RawRefund, ...] = ()
    name: str | None = None
    country: str | None = None
    cancelled_at: datetime | None = None


# ---------------------------------------------------------------------------
# Persisted facts
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OrderFact:
    """Canonical order-level financial fact in ledger currency."""

    tenant: str
    order_id: str
    created_at: datetime
    country: str | None
    gross_ex_vat: Decimal
    tax_ex_vat: Decimal
    shipping_ex_vat: Decimal
    item_count: int
    refunded_amount: Decimal
    refunded_qty: int
    refund_date: datetime | None
    discount_ex_vat: Decimal
    cancelled_qty: int
    sale_discount_amount: Decimal
    combined_discount_amount: Decimal
    cancelled_amount_ex_vat: Decimal = Decimal("0")
    charged_total: Decimal = Decimal("0")
    name: str | None = None
    cancelled_at: datetime | None = None
    source_currency: str = ""
    conversion_rate: Decimal = Decimal("1")

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.tenant, self.order_id)


@dataclass(frozen=True, slots=True)
class LineItemFact:
    """Canonical per-SKU fact within one order, in ledger currency."""

    tenant: str
    order_id: str
    sku: str
    created_at: datetime
    quantity: int
    cancelled_qty: int
    refunded_qty: int
    unit_price_ex_vat: Decimal
    discount_per_unit_ex_vat: Decimal
    refund_date: datetime | None
    country: str | None = None
    product_title: str = ""
    variant_title: str = ""
    original_unit_price_ex_vat: Decimal = Decimal("0")
    refunded_amount_ex_vat: Decimal = Decimal("0")
    cancelled_amount_ex_vat: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.tenant, self.order_id, self.sku)


@dataclass(frozen=True, slots=True)
class DataQualityIssue:
    """An upstream inconsistency that was skipped rather than raised."""

    order_id: str
    reason: str
    line_ref: str | None = None

    def as_error(self) -> UpstreamDataQualityError:
        return UpstreamDataQualityError(
            self.reason, order_id=self.order_id, line_ref=self.line_ref
        )


@dataclass(frozen=True, slots=True)
class BuiltFacts:
    """Output of the record builder for one upstream order."""

    order: OrderFact
    lines: tuple[LineItemFact, ...]
    issues: tuple[DataQualityIssue, ...] = ()


# ---------------------------------------------------------------------------
# Sync jobs
# ---------------------------------------------------------------------------


class FetchMode(enum.Enum):
    """Upstream fetch strategy."""

    PAGINATED = "paginated"
    BULK = "bulk"


class JobStatus(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


@dataclass(frozen=True, slots=True)
class SyncWindow:
    """Inclusive range of tenant-local calendar days."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass(frozen=True, slots=True)
class SyncJob:
    id: int
    tenant: str
    window: SyncWindow
    status: JobStatus
    mode: FetchMode = FetchMode.PAGINATED
    total_count: int = 0
    processed_count: int = 0
    records_processed: int = 0
    error_message: str | None = None
    last_completed_chunk_end: date | None = None
    failed_chunks: tuple[str, ...] = field(default_factory=tuple)
    created_at: datetime | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
