"""GraphQL documents for the Shopify Admin API."""

from __future__ import annotations

from datetime import UTC, datetime

MONEY = "shopMoney { amount currencyCode }"

TAX_LINES = f"taxLines {{ rate priceSet {{ {MONEY} }} }}"

REFUND_FIELDS = f"""
  id
  createdAt
  totalRefundedSet {{ {MONEY} }}
  transactions(first: 5) {{ edges {{ node {{ id processedAt }} }} }}
  refundLineItems(first: 100) {{
    edges {{
      node {{
        id
        quantity
        priceSet {{ {MONEY} }}
        lineItem {{ id sku }}
      }}
    }}
  }}
"""

ORDER_SCALAR_FIELDS = f"""
  id
  name
  createdAt
  cancelledAt
  taxesIncluded
  currencyCode
  shippingAddress {{ countryCode }}
  currentTotalPriceSet {{ {MONEY} }}
  originalTotalPriceSet {{ {MONEY} }}
  totalDiscountsSet {{ {MONEY} }}
  refunds {{ {REFUND_FIELDS} }}
"""

LINE_ITEM_FIELDS = f"""
  id
  sku
  name
  variantTitle
  quantity
  product {{ title }}
  originalUnitPriceSet {{ {MONEY} }}
  discountedUnitPriceSet {{ {MONEY} }}
  {TAX_LINES}
"""

SHIPPING_LINE_FIELDS = f"""
  id
  discountedPriceSet {{ {MONEY} }}
  {TAX_LINES}
"""

ORDERS_PAGE_QUERY = """
query OrdersPage($first: Int!, $after: String, $query: String!) {
  orders(first: $first, after: $after, query: $query, sortKey: CREATED_AT) {
    edges {
      cursor
      node {
        %(order_fields)s
        shippingLines(first: 5) { edges { node { %(shipping_fields)s } } }
        lineItems(first: %(max_line_items)d) { edges { node { %(line_fields)s } } }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

BULK_ORDERS_QUERY = """
{
  orders(query: "%(filter)s") {
    edges {
      node {
        %(order_fields)s
        shippingLines { edges { node { %(shipping_fields)s } } }
        lineItems { edges { node { %(line_fields)s } } }
      }
    }
  }
}
"""

BULK_RUN_MUTATION = """
mutation BulkRun($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

BULK_OPERATION_FIELDS = "id status errorCode url partialDataUrl objectCount fileSize"

BULK_POLL_QUERY = f"""
query BulkPoll($id: ID!) {{
  node(id: $id) {{ ... on BulkOperation {{ {BULK_OPERATION_FIELDS} }} }}
}}
"""

CURRENT_BULK_QUERY = f"""
query CurrentBulk {{
  currentBulkOperation(type: QUERY) {{ {BULK_OPERATION_FIELDS} }}
}}
"""

BULK_CANCEL_MUTATION = """
mutation BulkCancel($id: ID!) {
  bulkOperationCancel(id: $id) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

SHOP_QUERY = "query Shop { shop { name currencyCode } }"


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def created_at_filter(start: datetime, end: datetime) -> str:
    """Search filter for orders created in ``[start, end)``."""
    return f"created_at:>={_iso(start)} created_at:<{_iso(end)}"


def orders_page_query(max_line_items: int) -> str:
    return ORDERS_PAGE_QUERY % {
        "order_fields": ORDER_SCALAR_FIELDS,
        "shipping_fields": SHIPPING_LINE_FIELDS,
        "line_fields": LINE_ITEM_FIELDS,
        "max_line_items": max_line_items,
    }


def bulk_orders_query(start: datetime, end: datetime) -> str:
    return BULK_ORDERS_QUERY % {
        "filter": created_at_filter(start, end),
        "order_fields": ORDER_SCALAR_FIELDS,
        "shipping_fields": SHIPPING_LINE_FIELDS,
        "line_fields": LINE_ITEM_FIELDS,
    }
