from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime

from shopledger.adapters.shopify.bulk import BulkJobRunner
from shopledger.adapters.shopify.client import (
    ShopifyClient,
    Transport,
    urllib_transport,
)
from shopledger.adapters.shopify.pager import CursorPager
from shopledger.core.config import SyncSettings, TenantConfig
from shopledger.core.errors import ErrorClassification, classify_error
from shopledger.core.retry import RateLimiter, RetryPolicy, SleepFn
from shopledger.domain.entities import FetchMode, RawOrder


class ShopifyDataSource:
    """``DataSource`` backed by the Shopify Admin GraphQL API.

    One client (and so one rate limiter) is kept per tenant, whichever fetch
    strategy is used.
    """

    def __init__(
        self,
        settings: SyncSettings,
        *,
        transport: Transport = urllib_transport,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._sleep = sleep
        self._clients: dict[str, ShopifyClient] = {}

    def client_for(self, tenant: TenantConfig) -> ShopifyClient:
        client = self._clients.get(tenant.tenant_id)
        if client is None:
            client = ShopifyClient(
                tenant,
                api_version=self._settings.api_version,
                transport=self._transport,
                retry_policy=RetryPolicy(
                    max_attempts=self._settings.max_attempts,
                    base_delay=self._settings.backoff_seconds,
                ),
                rate_limiter=RateLimiter(
                    self._settings.rate_limit_ms / 1000, sleep=self._sleep
                ),
                sleep=self._sleep,
            )
            self._clients[tenant.tenant_id] = client
        return client

    async def fetch_window(
        self,
        tenant: TenantConfig,
        start: datetime,
        end: datetime,
        mode: FetchMode,
    ) -> AsyncIterator[RawOrder]:
        client = self.client_for(tenant)
        if mode is FetchMode.BULK:
            runner = BulkJobRunner(
                client,
                poll_interval=self._settings.poll_interval_seconds,
                timeout=self._settings.bulk_timeout_seconds,
                sleep=self._sleep,
            )
            for order in await runner.run(start, end):
                yield order
            return

        pager = CursorPager(
            client,
            page_size=self._settings.page_size,
            max_line_items=self._settings.max_line_items,
        )
        async for order in pager.iter_orders(start, end):
            yield order

    def classify_error(self, err: BaseException) -> ErrorClassification:
        return classify_error(err)

    async def test_connection(self, tenant: TenantConfig) -> str:
        """Return the shop name, raising if the tenant's credentials fail."""
        shop = await self.client_for(tenant).test_connection()
        return shop.name
