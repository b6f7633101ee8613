"""Proportional allocation of an order-level discount across line items."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from shopledger.core.errors import InvariantViolationError
from shopledger.domain.money import ZERO, effective_tax_rate


@dataclass(frozen=True, slots=True)
class AllocationLine:
    """Allocation input for one line, all amounts in the same currency."""

    line_id: str
    quantity: int
    line_total_incl_tax: Decimal
    unit_price_ex_vat: Decimal
    line_tax: Decimal

    @property
    def tax_rate(self) -> Decimal:
        """The line's own effective rate: ``line_tax / (unit_ex_vat * qty)``."""
        return effective_tax_rate(self.line_tax, self.unit_price_ex_vat * self.quantity)


@dataclass(frozen=True, slots=True)
class LineAllocation:
    line_id: str
    share: Decimal
    allocated_incl_tax: Decimal
    allocated_ex_tax: Decimal
    discount_per_unit_ex_vat: Decimal


@dataclass(frozen=True, slots=True)
class DiscountAllocation:
    lines: tuple[LineAllocation, ...]
    total_ex_tax: Decimal
    issue: str | None = None

    def for_line(self, line_id: str) -> LineAllocation | None:
        for allocation in self.lines:
            if allocation.line_id == line_id:
                return allocation
        return None


def allocate_discount(
    lines: Sequence[AllocationLine],
    order_discount: Decimal,
    *,
    discount_includes_tax: bool = True,
) -> DiscountAllocation:
    """Distribute ``order_discount`` across ``lines`` by tax-inclusive value share.

    Each line's share is converted to ex-tax with that line's own tax rate,
    so mixed-VAT orders are not distorted by a blended rate. When the
    discount is already quoted ex-tax (orders priced ex-tax upstream) the
    share is used as is.

    Nothing is rounded here; callers round the persisted values.

    Returns:
        DiscountAllocation with one entry per input line, in input order.
        A nonzero discount on a zero-value order allocates zero everywhere
        and reports the inconsistency in ``issue``.
    """
    for line in lines:
        if line.quantity < 0:
            raise InvariantViolationError(
                f"Negative quantity on line {line.line_id}: {line.quantity}"
            )

    total_incl = sum((line.line_total_incl_tax for line in lines), ZERO)

    if total_incl == 0:
        issue = None
        if order_discount != 0:
            issue = (
                f"Order-level discount {order_discount} on an order "
                "with zero line value"
            )
        zero_lines = tuple(
            LineAllocation(
                line_id=line.line_id,
                share=ZERO,
                allocated_incl_tax=ZERO,
                allocated_ex_tax=ZERO,
                discount_per_unit_ex_vat=ZERO,
            )
            for line in lines
        )
        return DiscountAllocation(lines=zero_lines, total_ex_tax=ZERO, issue=issue)

    allocations: list[LineAllocation] = []
    for line in lines:
        share = line.line_total_incl_tax / total_incl
        allocated = order_discount * share
        if discount_includes_tax:
            allocated_ex = allocated / (1 + line.tax_rate)
        else:
            allocated_ex = allocated
        per_unit = allocated_ex / line.quantity if line.quantity else ZERO
        allocations.append(
            LineAllocation(
                line_id=line.line_id,
                share=share,
                allocated_incl_tax=allocated,
                allocated_ex_tax=allocated_ex,
                discount_per_unit_ex_vat=per_unit,
            )
        )

    return DiscountAllocation(
        lines=tuple(allocations),
        total_ex_tax=sum((a.allocated_ex_tax for a in allocations), ZERO),
    )
