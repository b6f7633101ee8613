"""Record builder: composes normalization, discount allocation and refund
classification into canonical order and line-item facts.

Pure and deterministic. No I/O happens here; data-quality problems are
returned as ``DataQualityIssue`` values for the caller to log.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from shopledger.core.config import DEFAULT_LEDGER_CURRENCY, TenantConfig
from shopledger.core.errors import InvariantViolationError
from shopledger.domain.discounts import AllocationLine, allocate_discount
from shopledger.domain.entities import (
    BuiltFacts,
    DataQualityIssue,
    LineItemFact,
    OrderFact,
    RawLineItem,
    RawOrder,
)
from shopledger.domain.money import (
    ZERO,
    effective_tax_rate,
    ex_vat,
    incl_vat_total,
    remove_tax_at_rate,
    round_money,
    to_ledger,
)
from shopledger.domain.refunds import (
    LineRefundTotals,
    RefundLineContext,
    summarize_refunds,
)

TAX_RATE_PLACES = Decimal("0.0001")


@dataclass(frozen=True, slots=True)
class NormalizedLine:
    """A line item after tax separation, still in source currency."""

    line: RawLineItem
    unit_price_ex_vat: Decimal
    original_unit_price_ex_vat: Decimal
    tax_amount: Decimal
    tax_rate: Decimal
    total_incl_tax: Decimal

    @property
    def gross_ex_vat(self) -> Decimal:
        return self.unit_price_ex_vat * self.line.quantity


def normalize_line(line: RawLineItem, taxes_included: bool) -> NormalizedLine:
    if line.quantity < 0:
        raise InvariantViolationError(
            f"Negative quantity on line {line.line_id}: {line.quantity}"
        )
    tax = line.tax_amount
    unit_ex = ex_vat(line.discounted_unit_price, tax, line.quantity, taxes_included)
    rate = effective_tax_rate(tax, unit_ex * line.quantity)
    return NormalizedLine(
        line=line,
        unit_price_ex_vat=unit_ex,
        original_unit_price_ex_vat=remove_tax_at_rate(
            line.original_unit_price, rate, taxes_included
        ),
        tax_amount=tax,
        tax_rate=rate,
        total_incl_tax=incl_vat_total(
            line.discounted_unit_price, tax, line.quantity, taxes_included
        ),
    )


def _ledger(amount: Decimal, tenant: TenantConfig, ledger_currency: str) -> Decimal:
    return to_ledger(amount, tenant.conversion_rate, ledger_currency).amount


def _latest(dates: Sequence[datetime | None]) -> datetime | None:
    present = [d for d in dates if d is not None]
    return max(present) if present else None


def build_facts(
    raw: RawOrder,
    tenant: TenantConfig,
    *,
    ledger_currency: str = DEFAULT_LEDGER_CURRENCY,
) -> BuiltFacts:
    """Build one ``OrderFact`` and its ``LineItemFact``s from an upstream order.

    Order totals are rounded so ``gross + tax + shipping`` equals the rounded
    tax-inclusive charged total exactly; the tax component absorbs the
    rounding remainder.

    Raises:
        InvariantViolationError: On negative quantities or a non-positive
            conversion rate.
    """
    issues: list[DataQualityIssue] = []
    if raw.currency and raw.currency.upper() != tenant.currency.upper():
        issues.append(
            DataQualityIssue(
                order_id=raw.order_id,
                reason=(
                    f"Order currency {raw.currency} differs from tenant currency "
                    f"{tenant.currency}; tenant rate applied"
                ),
            )
        )

    def ledger(amount: Decimal) -> Decimal:
        return _ledger(amount, tenant, ledger_currency)

    normalized = [normalize_line(line, raw.taxes_included) for line in raw.line_items]

    # Shipping
    shipping_ex = ZERO
    shipping_tax = ZERO
    shipping_incl = ZERO
    for shipping in raw.shipping_lines:
        tax = shipping.tax_amount
        shipping_tax += tax
        if raw.taxes_included:
            shipping_ex += shipping.price - tax
            shipping_incl += shipping.price
        else:
            shipping_ex += shipping.price
            shipping_incl += shipping.price + tax

    gross_ex = sum((n.gross_ex_vat for n in normalized), ZERO)
    charged_total = sum((n.total_incl_tax for n in normalized), ZERO) + shipping_incl

    gross_rounded = round_money(ledger(gross_ex))
    shipping_rounded = round_money(ledger(shipping_ex))
    charged_rounded = round_money(ledger(charged_total))
    tax_rounded = charged_rounded - gross_rounded - shipping_rounded

    # Discounts
    allocation = allocate_discount(
        [
            AllocationLine(
                line_id=n.line.line_id,
                quantity=n.line.quantity,
                line_total_incl_tax=n.total_incl_tax,
                unit_price_ex_vat=n.unit_price_ex_vat,
                line_tax=n.tax_amount,
            )
            for n in normalized
        ],
        raw.total_discounts,
        discount_includes_tax=raw.taxes_included,
    )
    if allocation.issue:
        issues.append(DataQualityIssue(order_id=raw.order_id, reason=allocation.issue))

    sale_discount = ledger(raw.original_total - raw.current_total)
    combined_discount = ledger(raw.total_discounts) + sale_discount

    # Refunds and cancellations
    refunds = summarize_refunds(
        raw.order_id,
        raw.refunds,
        [
            RefundLineContext(
                line_id=n.line.line_id, sku=n.line.sku, tax_rate=n.tax_rate
            )
            for n in normalized
        ],
        taxes_included=raw.taxes_included,
        rate=tenant.conversion_rate,
    )
    issues.extend(refunds.issues)

    country = raw.country or tenant.default_country

    order = OrderFact(
        tenant=tenant.tenant_id,
        order_id=raw.order_id,
        created_at=raw.created_at,
        country=country,
        gross_ex_vat=gross_rounded,
        tax_ex_vat=tax_rounded,
        shipping_ex_vat=shipping_rounded,
        item_count=sum(n.line.quantity for n in normalized),
        refunded_amount=round_money(refunds.refunded_amount),
        refunded_qty=refunds.refunded_qty,
        refund_date=refunds.refund_date,
        discount_ex_vat=round_money(ledger(allocation.total_ex_tax)),
        cancelled_qty=refunds.cancelled_qty,
        sale_discount_amount=round_money(sale_discount),
        combined_discount_amount=round_money(combined_discount),
        cancelled_amount_ex_vat=round_money(refunds.cancelled_amount_ex_vat),
        charged_total=charged_rounded,
        name=raw.name,
        cancelled_at=raw.cancelled_at,
        source_currency=raw.currency or tenant.currency,
        conversion_rate=tenant.conversion_rate,
    )

    # Line facts, one per SKU
    groups: dict[str, list[NormalizedLine]] = {}
    for n in normalized:
        if n.line.sku:
            groups.setdefault(n.line.sku, []).append(n)

    line_facts: list[LineItemFact] = []
    for sku, members in groups.items():
        quantity = sum(m.line.quantity for m in members)
        line_refunds = [refunds.for_line(m.line.line_id) for m in members]
        allocated_ex = sum(
            (
                alloc.allocated_ex_tax
                for m in members
                if (alloc := allocation.for_line(m.line.line_id)) is not None
            ),
            ZERO,
        )
        if quantity:
            unit_ex = sum((m.gross_ex_vat for m in members), ZERO) / quantity
            original_ex = (
                sum(
                    (m.original_unit_price_ex_vat * m.line.quantity for m in members),
                    ZERO,
                )
                / quantity
            )
            discount_per_unit = allocated_ex / quantity
        else:
            unit_ex = members[0].unit_price_ex_vat
            original_ex = members[0].original_unit_price_ex_vat
            discount_per_unit = ZERO

        tax_rate = effective_tax_rate(
            sum((m.tax_amount for m in members), ZERO),
            sum((m.gross_ex_vat for m in members), ZERO),
        )

        line_facts.append(
            _line_fact(
                raw,
                tenant,
                sku=sku,
                first=members[0].line,
                quantity=quantity,
                line_refunds=line_refunds,
                unit_price_ex_vat=round_money(ledger(unit_ex)),
                original_unit_price_ex_vat=round_money(ledger(original_ex)),
                discount_per_unit_ex_vat=round_money(ledger(discount_per_unit)),
                tax_rate=tax_rate.quantize(TAX_RATE_PLACES),
                country=country,
            )
        )

    return BuiltFacts(order=order, lines=tuple(line_facts), issues=tuple(issues))


def _line_fact(
    raw: RawOrder,
    tenant: TenantConfig,
    *,
    sku: str,
    first: RawLineItem,
    quantity: int,
    line_refunds: Sequence[LineRefundTotals],
    unit_price_ex_vat: Decimal,
    original_unit_price_ex_vat: Decimal,
    discount_per_unit_ex_vat: Decimal,
    tax_rate: Decimal,
    country: str | None,
) -> LineItemFact:
    return LineItemFact(
        tenant=tenant.tenant_id,
        order_id=raw.order_id,
        sku=sku,
        created_at=raw.created_at,
        quantity=quantity,
        cancelled_qty=sum(r.cancelled_qty for r in line_refunds),
        refunded_qty=sum(r.refunded_qty for r in line_refunds),
        unit_price_ex_vat=unit_price_ex_vat,
        discount_per_unit_ex_vat=discount_per_unit_ex_vat,
        refund_date=_latest([r.refund_date for r in line_refunds]),
        country=country,
        product_title=first.product_title,
        variant_title=first.variant_title,
        original_unit_price_ex_vat=original_unit_price_ex_vat,
        refunded_amount_ex_vat=round_money(
            sum((r.refunded_amount_ex_vat for r in line_refunds), ZERO)
        ),
        cancelled_amount_ex_vat=round_money(
            sum((r.cancelled_amount_ex_vat for r in line_refunds), ZERO)
        ),
        tax_rate=tax_rate,
    )
