from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from shopledger.core.config import TenantConfig
from shopledger.domain.entities import (
    LineItemFact,
    OrderFact,
    RawLineItem,
    RawOrder,
    RawRefund,
    RawRefundLine,
    RawShippingLine,
    RawTaxLine,
)


def create_tenant(
    *,
    tenant_id: str = "pompdelux-da",
    currency: str = "DKK",
    rate: str = "1",
    timezone: str = "UTC",
    default_country: str | None = None,
) -> TenantConfig:
    """Create a test tenant."""
    return TenantConfig(
        tenant_id=tenant_id,
        domain=f"{tenant_id}.myshopify.com",
        access_token="shpat_test",
        currency=currency,
        conversion_rate=Decimal(rate),
        timezone=timezone,
        default_country=default_country,
    )


def create_line(
    *,
    line_id: str = "gid://shopify/LineItem/1",
    sku: str | None = "SKU-1",
    quantity: int = 1,
    unit_price: str = "125.00",
    original_unit_price: str | None = None,
    tax: str = "25.00",
    tax_rate: str = "0.25",
) -> RawLineItem:
    """Create a line item; ``tax`` covers the whole line."""
    return RawLineItem(
        line_id=line_id,
        sku=sku,
        quantity=quantity,
        original_unit_price=Decimal(original_unit_price or unit_price),
        discounted_unit_price=Decimal(unit_price),
        tax_lines=(RawTaxLine(rate=Decimal(tax_rate), amount=Decimal(tax)),),
        product_title=f"Product {sku}",
        variant_title="Default",
    )


def create_shipping(*, price: str = "50.00", tax: str = "10.00") -> RawShippingLine:
    return RawShippingLine(
        price=Decimal(price),
        tax_lines=(RawTaxLine(rate=Decimal("0.25"), amount=Decimal(tax)),),
    )


def create_refund(
    *,
    amount: str,
    created_at: datetime,
    lines: list[tuple[str | None, int, str]] | None = None,
    processed_at: datetime | None = None,
) -> RawRefund:
    """Create a refund event; ``lines`` are ``(line_ref, quantity, unit_price)``."""
    return RawRefund(
        created_at=created_at,
        processed_at=processed_at,
        total_refunded_amount=Decimal(amount),
        lines=tuple(
            RawRefundLine(line_ref=ref, quantity=qty, price_at_refund=Decimal(price))
            for ref, qty, price in (lines or [])
        ),
    )


def create_raw_order(
    *,
    order_id: str = "1001",
    line_items: list[RawLineItem] | None = None,
    shipping_lines: list[RawShippingLine] | None = None,
    refunds: list[RawRefund] | None = None,
    taxes_included: bool = True,
    currency: str = "DKK",
    total_discounts: str = "0",
    original_total: str = "0",
    current_total: str = "0",
    country: str | None = "DK",
    created_at: datetime | None = None,
) -> RawOrder:
    """Create an upstream order with one default line when none are given."""
    return RawOrder(
        order_id=order_id,
        name=f"#{order_id}",
        created_at=created_at or datetime(2024, 10, 1, 12, 0, tzinfo=UTC),
        currency=currency,
        taxes_included=taxes_included,
        line_items=tuple(line_items if line_items is not None else [create_line()]),
        shipping_lines=tuple(shipping_lines or []),
        total_discounts=Decimal(total_discounts),
        original_total=Decimal(original_total),
        current_total=Decimal(current_total),
        refunds=tuple(refunds or []),
        country=country,
    )


def create_order_fact(
    *,
    tenant: str = "pompdelux-da",
    order_id: str = "1001",
    refund_date: datetime | None = None,
    refunded_qty: int = 0,
    gross: str = "100.00",
) -> OrderFact:
    return OrderFact(
        tenant=tenant,
        order_id=order_id,
        created_at=datetime(2024, 10, 1, 12, 0, tzinfo=UTC),
        country="DK",
        gross_ex_vat=Decimal(gross),
        tax_ex_vat=Decimal("25.00"),
        shipping_ex_vat=Decimal("0.00"),
        item_count=1,
        refunded_amount=Decimal("0.00"),
        refunded_qty=refunded_qty,
        refund_date=refund_date,
        discount_ex_vat=Decimal("0.00"),
        cancelled_qty=0,
        sale_discount_amount=Decimal("0.00"),
        combined_discount_amount=Decimal("0.00"),
        charged_total=Decimal("125.00"),
        source_currency="DKK",
    )


def create_line_fact(
    *,
    tenant: str = "pompdelux-da",
    order_id: str = "1001",
    sku: str = "SKU-1",
    refund_date: datetime | None = None,
    refunded_qty: int = 0,
    quantity: int = 1,
) -> LineItemFact:
    return LineItemFact(
        tenant=tenant,
        order_id=order_id,
        sku=sku,
        created_at=datetime(2024, 10, 1, 12, 0, tzinfo=UTC),
        quantity=quantity,
        cancelled_qty=0,
        refunded_qty=refunded_qty,
        unit_price_ex_vat=Decimal("100.00"),
        discount_per_unit_ex_vat=Decimal("0.00"),
        refund_date=refund_date,
        country="DK",
        tax_rate=Decimal("0.2500"),
    )
