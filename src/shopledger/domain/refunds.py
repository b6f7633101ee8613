"""Refund/cancellation classification and per-line aggregation.

Every refund event is classified on its own: an event that moved no money
(``total_refunded_amount == 0``) is a cancellation, anything else is a
refund. There is no multi-step lifecycle.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import enum

from shopledger.core.errors import InvariantViolationError
from shopledger.domain.entities import DataQualityIssue, RawRefund
from shopledger.domain.money import ZERO, remove_tax_at_rate


class RefundKind(enum.Enum):
    CANCELLATION = "cancellation"
    REFUND = "refund"


def classify_refund(event: RawRefund) -> RefundKind:
    if event.total_refunded_amount == 0:
        return RefundKind.CANCELLATION
    return RefundKind.REFUND


@dataclass(frozen=True, slots=True)
class RefundLineContext:
    """What the classifier needs to know about an order line."""

    line_id: str
    sku: str | None
    tax_rate: Decimal


@dataclass
class LineRefundTotals:
    cancelled_qty: int = 0
    refunded_qty: int = 0
    cancelled_amount_ex_vat: Decimal = ZERO
    refunded_amount_ex_vat: Decimal = ZERO
    refund_date: datetime | None = None


@dataclass(frozen=True, slots=True)
class RefundSummary:
    """Aggregated refund/cancellation data for one order, ledger currency."""

    lines: dict[str, LineRefundTotals]
    refunded_amount: Decimal
    refund_date: datetime | None
    issues: tuple[DataQualityIssue, ...] = field(default_factory=tuple)

    @property
    def cancelled_qty(self) -> int:
        return sum(t.cancelled_qty for t in self.lines.values())

    @property
    def refunded_qty(self) -> int:
        return sum(t.refunded_qty for t in self.lines.values())

    @property
    def cancelled_amount_ex_vat(self) -> Decimal:
        return sum((t.cancelled_amount_ex_vat for t in self.lines.values()), ZERO)

    def for_line(self, line_id: str) -> LineRefundTotals:
        return self.lines.get(line_id) or LineRefundTotals()


def _latest(current: datetime | None, candidate: datetime) -> datetime:
    if current is None or candidate > current:
        return candidate
    return current


def _resolve_line(
    line_ref: str | None,
    sku: str | None,
    by_id: dict[str, RefundLineContext],
    by_sku: dict[str, RefundLineContext],
) -> RefundLineContext | None:
    if line_ref is not None and line_ref in by_id:
        return by_id[line_ref]
    if line_ref is None and sku:
        return by_sku.get(sku)
    return None


def summarize_refunds(
    order_id: str,
    events: Iterable[RawRefund],
    lines: Sequence[RefundLineContext],
    *,
    taxes_included: bool,
    rate: Decimal,
) -> RefundSummary:
    """Classify every refund event and aggregate it per order line.

    Refund lines pointing at a line the order does not have are skipped and
    reported as data-quality issues.
    """
    by_id = {line.line_id: line for line in lines}
    by_sku: dict[str, RefundLineContext] = {}
    for line in lines:
        if line.sku and line.sku not in by_sku:
            by_sku[line.sku] = line

    totals: dict[str, LineRefundTotals] = {}
    issues: list[DataQualityIssue] = []
    refunded_amount = ZERO
    refund_date: datetime | None = None

    for event in events:
        kind = classify_refund(event)
        if kind is RefundKind.REFUND:
            refunded_amount += event.total_refunded_amount * rate
            refund_date = _latest(refund_date, event.effective_date)

        for refund_line in event.lines:
            if refund_line.quantity < 0:
                raise InvariantViolationError(
                    f"Negative refund quantity on order {order_id}: "
                    f"{refund_line.quantity}"
                )

            context = _resolve_line(
                refund_line.line_ref, refund_line.sku, by_id, by_sku
            )
            if context is None:
                issues.append(
                    DataQualityIssue(
                        order_id=order_id,
                        line_ref=refund_line.line_ref or refund_line.sku,
                        reason="Refund line references a line absent from the order",
                    )
                )
                continue

            amount_ex_vat = (
                remove_tax_at_rate(
                    refund_line.price_at_refund * refund_line.quantity,
                    context.tax_rate,
                    taxes_included,
                )
                * rate
            )
            line_totals = totals.setdefault(context.line_id, LineRefundTotals())
            if kind is RefundKind.CANCELLATION:
                line_totals.cancelled_qty += refund_line.quantity
                line_totals.cancelled_amount_ex_vat += amount_ex_vat
            else:
                line_totals.refunded_qty += refund_line.quantity
                line_totals.refunded_amount_ex_vat += amount_ex_vat
                line_totals.refund_date = _latest(
                    line_totals.refund_date, event.effective_date
                )

    return RefundSummary(
        lines=totals,
        refunded_amount=refunded_amount,
        refund_date=refund_date,
        issues=tuple(issues),
    )
