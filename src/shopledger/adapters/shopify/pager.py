"""Cursor-paged order fetch strategy."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime

from pydantic import ValidationError

from shopledger.adapters.shopify.client import ShopifyClient
from shopledger.adapters.shopify.logger import FetchLogger
from shopledger.adapters.shopify.models import OrderNode, OrdersConnection
from shopledger.adapters.shopify.queries import created_at_filter, orders_page_query
from shopledger.core.errors import UpstreamRequestError
from shopledger.domain.entities import RawOrder

MAX_ORDERS_PER_PAGE = 250
MAX_LINE_ITEMS = 100


class CursorPager:
    """Walks the orders connection page by page for one created-at range.

    Each page request goes through the client's retry and rate limiting.
    Paging stops on a short page, on ``hasNextPage == false`` or when the
    upstream returns no cursor to continue from.
    """

    def __init__(
        self,
        client: ShopifyClient,
        *,
        page_size: int = MAX_ORDERS_PER_PAGE,
        max_line_items: int = MAX_LINE_ITEMS,
        fetch_logger: FetchLogger | None = None,
    ) -> None:
        if not 1 <= page_size <= MAX_ORDERS_PER_PAGE:
            msg = f"page_size must be between 1 and {MAX_ORDERS_PER_PAGE}"
            raise ValueError(msg)
        self._client = client
        self._page_size = page_size
        self._max_line_items = max_line_items
        self._query = orders_page_query(max_line_items)
        self._logger = fetch_logger or FetchLogger()

    async def fetch_page(
        self, search: str, cursor: str | None
    ) -> OrdersConnection:
        data = await self._client.execute(
            self._query,
            {"first": self._page_size, "after": cursor, "query": search},
            operation="orders_page",
        )
        try:
            return OrdersConnection.parse(data.get("orders") or {})
        except ValidationError as e:
            raise UpstreamRequestError(f"Malformed orders page: {e}") from e

    async def iter_orders(
        self, start: datetime, end: datetime
    ) -> AsyncIterator[RawOrder]:
        """Yield every order created in ``[start, end)``."""
        tenant = self._client.tenant.tenant_id
        search = created_at_filter(start, end)
        cursor: str | None = None
        pages = 0
        emitted = 0

        while True:
            connection = await self.fetch_page(search, cursor)
            pages += 1
            has_next = connection.page_info.has_next_page
            self._logger.page(tenant, pages, len(connection.edges), has_next)

            for edge in connection.edges:
                order = self._to_raw(tenant, edge.node)
                if order is not None:
                    emitted += 1
                    yield order

            cursor = connection.page_info.end_cursor
            if len(connection.edges) < self._page_size or not has_next or not cursor:
                break

        self._logger.done(tenant, pages, emitted)

    def _to_raw(self, tenant: str, node: dict) -> RawOrder | None:
        try:
            order = OrderNode.parse(node)
        except ValidationError as e:
            self._logger.skipped_order(tenant, str(node.get("id", "?")), e)
            return None
        if len(order.line_items) >= self._max_line_items:
            self._logger.line_items_truncated(
                tenant, order.id, self._max_line_items
            )
        return order.to_raw_order()
