from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    TIMESTAMP,
    Date,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

MONEY = Numeric(14, 2)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class OrderFactRow(Base):
    """One order's ledger-currency financial fact."""

    __tablename__ = "order_facts"
    __table_args__ = (
        UniqueConstraint("tenant", "order_id", name="uq_order_facts_tenant_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant: Mapped[str] = mapped_column(String, nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    gross_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    shipping_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    charged_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False)
    refunded_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    refunded_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    refund_date: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    discount_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    cancelled_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    cancelled_amount_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    sale_discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    combined_discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    source_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    conversion_rate: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class LineItemFactRow(Base):
    """Per-SKU fact within one order."""

    __tablename__ = "line_item_facts"
    __table_args__ = (
        UniqueConstraint(
            "tenant", "order_id", "sku", name="uq_line_item_facts_tenant_order_sku"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant: Mapped[str] = mapped_column(String, nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(String, nullable=False)
    sku: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    product_title: Mapped[str] = mapped_column(String, nullable=False, default="")
    variant_title: Mapped[str] = mapped_column(String, nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cancelled_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    refunded_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    original_unit_price_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount_per_unit_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    refunded_amount_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    cancelled_amount_ex_vat: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    refund_date: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    synced_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class SyncJobRow(Base):
    """Persisted progress of one (tenant, window) sync."""

    __tablename__ = "sync_jobs"
    __table_args__ = (
        UniqueConstraint(
            "tenant", "window_start", "window_end", name="uq_sync_jobs_tenant_window"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant: Mapped[str] = mapped_column(String, nullable=False, index=True)
    window_start: Mapped[date] = mapped_column(Date, nullable=False)
    window_end: Mapped[date] = mapped_column(Date, nullable=False)
    mode: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_completed_chunk_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    failed_chunks: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )  # comma-separated chunk labels
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)
