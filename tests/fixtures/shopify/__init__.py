"""Scripted HTTP transport and Shopify payload builders used across tests."""

from tests.fixtures.shopify.payloads import (
    bulk_operation,
    create_order_node,
    graphql_response,
    orders_page,
)
from tests.fixtures.shopify.transport import (
    ScriptedTransport,
    create_client,
    no_sleep,
)

__all__ = [
    "ScriptedTransport",
    "bulk_operation",
    "create_client",
    "create_order_node",
    "graphql_response",
    "no_sleep",
    "orders_page",
]
