from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from shopledger.adapters.shopify.source import ShopifyDataSource
from shopledger.core.config import SyncSettings
from shopledger.core.errors import (
    BulkJobFailedError,
    JobTimeoutError,
    UpstreamThrottledError,
)
from shopledger.domain.entities import FetchMode, RawOrder
from tests.fixtures.orders import create_tenant
from tests.fixtures.shopify import (
    ScriptedTransport,
    bulk_operation,
    create_order_node,
    graphql_response,
    no_sleep,
    orders_page,
)

START = datetime(2024, 10, 1, tzinfo=UTC)
END = datetime(2024, 10, 31, tzinfo=UTC)


def create_source(transport: ScriptedTransport) -> ShopifyDataSource:
    settings = SyncSettings(
        page_size=2,
        rate_limit_ms=0,
        poll_interval_seconds=10.0,
        bulk_timeout_seconds=30.0,
    )
    return ShopifyDataSource(settings, transport=transport, sleep=no_sleep)


def collect(source: ShopifyDataSource, mode: FetchMode) -> list[RawOrder]:
    async def run() -> list[RawOrder]:
        return [
            order
            async for order in source.fetch_window(create_tenant(), START, END, mode)
        ]

    return asyncio.run(run())


class TestShopifyDataSource:
    def test_paginated_mode_uses_cursor_pages(self) -> None:
        transport = ScriptedTransport([orders_page([create_order_node(1)])])

        orders = collect(create_source(transport), FetchMode.PAGINATED)

        assert [order.order_id for order in orders] == ["1"]
        assert transport.requests[0].variables["first"] == 2

    def test_bulk_mode_runs_an_export(self) -> None:
        # input
        transport = ScriptedTransport(
            [
                graphql_response({"currentBulkOperation": None}),
                graphql_response(
                    {
                        "bulkOperationRunQuery": {
                            "bulkOperation": {
                                "id": "gid://shopify/BulkOperation/1",
                                "status": "CREATED",
                            },
                            "userErrors": [],
                        }
                    }
                ),
                bulk_operation("COMPLETED"),
            ]
        )

        # act
        orders = collect(create_source(transport), FetchMode.BULK)

        # assert
        assert orders == []
        assert "bulkOperationRunQuery" in transport.requests[1].query

    def test_one_client_per_tenant(self) -> None:
        source = create_source(ScriptedTransport())
        tenant = create_tenant()

        assert source.client_for(tenant) is source.client_for(tenant)
        assert source.client_for(tenant) is not source.client_for(
            create_tenant(tenant_id="pompdelux-de")
        )

    def test_classify_error(self) -> None:
        source = create_source(ScriptedTransport())

        throttled = source.classify_error(UpstreamThrottledError("429"))
        assert throttled.retryable and throttled.throttled
        assert not source.classify_error(JobTimeoutError("stuck")).retryable
        assert source.classify_error(
            BulkJobFailedError("failed", error_code="INTERNAL_SERVER_ERROR")
        ).retryable
        assert not source.classify_error(
            BulkJobFailedError("failed", error_code="ACCESS_DENIED")
        ).retryable

    def test_test_connection_returns_shop_name(self) -> None:
        transport = ScriptedTransport(
            [graphql_response({"shop": {"name": "Pompdelux", "currencyCode": "DKK"}})]
        )

        name = asyncio.run(create_source(transport).test_connection(create_tenant()))

        assert name == "Pompdelux"
