from __future__ import annotations

import json
from typing import Any

from shopledger.adapters.shopify.client import HttpResponse


def graphql_response(
    data: dict[str, Any] | None = None,
    *,
    errors: list[dict[str, Any]] | None = None,
    status: int = 200,
    headers: dict[str, str] | None = None,
) -> HttpResponse:
    payload: dict[str, Any] = {}
    if data is not None:
        payload["data"] = data
    if errors is not None:
        payload["errors"] = errors
    return HttpResponse(
        status=status, body=json.dumps(payload).encode("utf-8"), headers=headers or {}
    )


def _money(amount: str, currency: str = "DKK") -> dict[str, Any]:
    return {"shopMoney": {"amount": amount, "currencyCode": currency}}


def create_order_node(
    order_id: int = 1001,
    *,
    created_at: str = "2024-10-01T12:00:00Z",
    line_count: int = 1,
    currency: str = "DKK",
    refunds: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Create an order node as returned by the orders connection.

    Each line is one unit at 125.00 incl. 25.00 VAT.
    """
    lines = [
        {
            "id": f"gid://shopify/LineItem/{order_id}{n}",
            "sku": f"SKU-{n}",
            "name": f"Product {n}",
            "variantTitle": "Default",
            "quantity": 1,
            "originalUnitPriceSet": _money("125.00", currency),
            "discountedUnitPriceSet": _money("125.00", currency),
            "taxLines": [{"rate": "0.25", "priceSet": _money("25.00", currency)}],
        }
        for n in range(line_count)
    ]
    return {
        "id": f"gid://shopify/Order/{order_id}",
        "name": f"#{order_id}",
        "createdAt": created_at,
        "taxesIncluded": True,
        "currencyCode": currency,
        "shippingAddress": {"countryCode": "DK"},
        "totalDiscountsSet": _money("0.00", currency),
        "originalTotalPriceSet": _money(f"{125 * line_count}.00", currency),
        "currentTotalPriceSet": _money(f"{125 * line_count}.00", currency),
        "refunds": refunds or [],
        "shippingLines": {"edges": []},
        "lineItems": {"edges": [{"node": line} for line in lines]},
    }


def orders_page(
    nodes: list[dict[str, Any]],
    *,
    has_next: bool = False,
    end_cursor: str | None = None,
) -> HttpResponse:
    edges = [{"cursor": f"c{n['id']}", "node": n} for n in nodes]
    return graphql_response(
        {
            "orders": {
                "edges": edges,
                "pageInfo": {"hasNextPage": has_next, "endCursor": end_cursor},
            }
        }
    )


def bulk_operation(
    status: str,
    *,
    operation_id: str = "gid://shopify/BulkOperation/1",
    url: str | None = None,
    error_code: str | None = None,
    key: str = "node",
) -> HttpResponse:
    node = None
    if status:
        node = {
            "id": operation_id,
            "status": status,
            "errorCode": error_code,
            "url": url,
            "objectCount": "0",
        }
    return graphql_response({key: node})
