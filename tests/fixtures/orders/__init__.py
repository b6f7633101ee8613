"""Builders for upstream orders, tenants and facts used across tests."""

from tests.fixtures.orders.builders import (
    create_line,
    create_line_fact,
    create_order_fact,
    create_raw_order,
    create_refund,
    create_shipping,
    create_tenant,
)

__all__ = [
    "create_line",
    "create_line_fact",
    "create_order_fact",
    "create_raw_order",
    "create_refund",
    "create_shipping",
    "create_tenant",
]
