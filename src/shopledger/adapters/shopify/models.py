from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Self

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from shopledger.domain.entities import (
    RawLineItem,
    RawOrder,
    RawRefund,
    RawRefundLine,
    RawShippingLine,
    RawTaxLine,
)
from shopledger.domain.money import ZERO


def unwrap_connection(value: Any) -> Any:
    """Accept a GraphQL connection (``edges``/``nodes``) or a plain list."""
    if value is None:
        return []
    if isinstance(value, dict):
        if "edges" in value:
            return [edge.get("node", {}) for edge in value["edges"] or []]
        if "nodes" in value:
            return value["nodes"] or []
    return value


def legacy_id(gid: str) -> str:
    """``gid://shopify/Order/123`` -> ``123``."""
    return gid.rsplit("/", 1)[-1]


class ShopifyBaseModel(BaseModel):
    """Shared base for Shopify response models with a short parse alias."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class ShopMoney(ShopifyBaseModel):
    amount: Decimal = ZERO
    currency_code: str | None = Field(default=None, alias="currencyCode")


class MoneyBag(ShopifyBaseModel):
    shop_money: ShopMoney = Field(default_factory=ShopMoney, alias="shopMoney")


def _amount(bag: MoneyBag | None) -> Decimal:
    return bag.shop_money.amount if bag is not None else ZERO


class TaxLineNode(ShopifyBaseModel):
    rate: Decimal | None = None
    price_set: MoneyBag | None = Field(default=None, alias="priceSet")

    def to_raw(self) -> RawTaxLine:
        return RawTaxLine(rate=self.rate or ZERO, amount=_amount(self.price_set))


class ProductRef(ShopifyBaseModel):
    title: str | None = None


class LineItemNode(ShopifyBaseModel):
    id: str
    sku: str | None = None
    name: str | None = None
    variant_title: str | None = Field(default=None, alias="variantTitle")
    quantity: int = 0
    product: ProductRef | None = None
    original_unit_price_set: MoneyBag | None = Field(
        default=None, alias="originalUnitPriceSet"
    )
    discounted_unit_price_set: MoneyBag | None = Field(
        default=None, alias="discountedUnitPriceSet"
    )
    tax_lines: list[TaxLineNode] = Field(default_factory=list, alias="taxLines")

    def to_raw(self) -> RawLineItem:
        discounted = self.discounted_unit_price_set or self.original_unit_price_set
        return RawLineItem(
            line_id=self.id,
            sku=(self.sku or "").strip() or None,
            quantity=self.quantity,
            original_unit_price=_amount(self.original_unit_price_set or discounted),
            discounted_unit_price=_amount(discounted),
            tax_lines=tuple(tl.to_raw() for tl in self.tax_lines),
            product_title=(self.product.title if self.product else None)
            or self.name
            or "",
            variant_title=self.variant_title or "",
        )


class ShippingLineNode(ShopifyBaseModel):
    id: str | None = None
    discounted_price_set: MoneyBag | None = Field(
        default=None, alias="discountedPriceSet"
    )
    original_price_set: MoneyBag | None = Field(default=None, alias="originalPriceSet")
    tax_lines: list[TaxLineNode] = Field(default_factory=list, alias="taxLines")

    def to_raw(self) -> RawShippingLine:
        return RawShippingLine(
            price=_amount(self.discounted_price_set or self.original_price_set),
            tax_lines=tuple(tl.to_raw() for tl in self.tax_lines),
        )


class LineItemRef(ShopifyBaseModel):
    id: str | None = None
    sku: str | None = None


class RefundLineItemNode(ShopifyBaseModel):
    quantity: int = 0
    price_set: MoneyBag | None = Field(default=None, alias="priceSet")
    line_item: LineItemRef | None = Field(default=None, alias="lineItem")

    def to_raw(self) -> RawRefundLine:
        return RawRefundLine(
            line_ref=self.line_item.id if self.line_item else None,
            sku=self.line_item.sku if self.line_item else None,
            quantity=self.quantity,
            price_at_refund=_amount(self.price_set),
        )


class TransactionNode(ShopifyBaseModel):
    processed_at: datetime | None = Field(default=None, alias="processedAt")


class RefundNode(ShopifyBaseModel):
    id: str | None = None
    created_at: datetime = Field(alias="createdAt")
    total_refunded_set: MoneyBag | None = Field(default=None, alias="totalRefundedSet")
    transactions: Annotated[
        list[TransactionNode], BeforeValidator(unwrap_connection)
    ] = Field(default_factory=list)
    refund_line_items: Annotated[
        list[RefundLineItemNode], BeforeValidator(unwrap_connection)
    ] = Field(default_factory=list, alias="refundLineItems")

    def settled_at(self) -> datetime | None:
        processed = [t.processed_at for t in self.transactions if t.processed_at]
        return max(processed) if processed else None

    def to_raw(self) -> RawRefund:
        return RawRefund(
            refund_id=self.id,
            created_at=self.created_at,
            processed_at=self.settled_at(),
            total_refunded_amount=_amount(self.total_refunded_set),
            lines=tuple(line.to_raw() for line in self.refund_line_items),
        )


class AddressNode(ShopifyBaseModel):
    country_code: str | None = Field(default=None, alias="countryCode")


class OrderNode(ShopifyBaseModel):
    id: str
    name: str | None = None
    created_at: datetime = Field(alias="createdAt")
    cancelled_at: datetime | None = Field(default=None, alias="cancelledAt")
    taxes_included: bool = Field(default=False, alias="taxesIncluded")
    currency_code: str | None = Field(default=None, alias="currencyCode")
    shipping_address: AddressNode | None = Field(default=None, alias="shippingAddress")
    current_total_price_set: MoneyBag | None = Field(
        default=None, alias="currentTotalPriceSet"
    )
    original_total_price_set: MoneyBag | None = Field(
        default=None, alias="originalTotalPriceSet"
    )
    total_discounts_set: MoneyBag | None = Field(
        default=None, alias="totalDiscountsSet"
    )
    refunds: list[RefundNode] = Field(default_factory=list)
    line_items: Annotated[list[LineItemNode], BeforeValidator(unwrap_connection)] = (
        Field(default_factory=list, alias="lineItems")
    )
    shipping_lines: Annotated[
        list[ShippingLineNode], BeforeValidator(unwrap_connection)
    ] = Field(default_factory=list, alias="shippingLines")

    def _currency(self) -> str:
        if self.currency_code:
            return self.currency_code
        for bag in (self.current_total_price_set, self.original_total_price_set):
            if bag is not None and bag.shop_money.currency_code:
                return bag.shop_money.currency_code
        return ""

    def to_raw_order(self) -> RawOrder:
        return RawOrder(
            order_id=legacy_id(self.id),
            name=self.name,
            created_at=self.created_at,
            cancelled_at=self.cancelled_at,
            currency=self._currency(),
            taxes_included=self.taxes_included,
            country=self.shipping_address.country_code
            if self.shipping_address
            else None,
            line_items=tuple(line.to_raw() for line in self.line_items),
            shipping_lines=tuple(s.to_raw() for s in self.shipping_lines),
            total_discounts=_amount(self.total_discounts_set),
            original_total=_amount(self.original_total_price_set),
            current_total=_amount(self.current_total_price_set),
            refunds=tuple(r.to_raw() for r in self.refunds),
        )


class PageInfo(ShopifyBaseModel):
    has_next_page: bool = Field(default=False, alias="hasNextPage")
    end_cursor: str | None = Field(default=None, alias="endCursor")


class OrderEdge(ShopifyBaseModel):
    cursor: str | None = None
    node: dict[str, Any]


class OrdersConnection(ShopifyBaseModel):
    """Page of orders; nodes stay raw so one bad order can be skipped alone."""

    edges: list[OrderEdge] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo, alias="pageInfo")


class UserError(ShopifyBaseModel):
    field: list[str] | None = None
    message: str


class BulkOperationNode(ShopifyBaseModel):
    id: str
    status: str
    error_code: str | None = Field(default=None, alias="errorCode")
    url: str | None = None
    partial_data_url: str | None = Field(default=None, alias="partialDataUrl")
    object_count: int | None = Field(default=None, alias="objectCount")
    file_size: int | None = Field(default=None, alias="fileSize")


class BulkMutationPayload(ShopifyBaseModel):
    bulk_operation: BulkOperationNode | None = Field(
        default=None, alias="bulkOperation"
    )
    user_errors: list[UserError] = Field(default_factory=list, alias="userErrors")


class ShopInfo(ShopifyBaseModel):
    name: str
    currency_code: str = Field(alias="currencyCode")
