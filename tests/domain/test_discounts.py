from __future__ import annotations

from decimal import Decimal

import pytest

from shopledger.core.errors import InvariantViolationError
from shopledger.domain.discounts import AllocationLine, allocate_discount

# Helper functions


def create_allocation_line(
    line_id: str,
    *,
    unit_ex: str,
    quantity: int = 1,
    tax_rate: str = "0.25",
) -> AllocationLine:
    """Create an allocation line priced ex-VAT with the given tax rate."""
    unit = Decimal(unit_ex)
    line_tax = unit * quantity * Decimal(tax_rate)
    return AllocationLine(
        line_id=line_id,
        quantity=quantity,
        line_total_incl_tax=unit * quantity + line_tax,
        unit_price_ex_vat=unit,
        line_tax=line_tax,
    )


def test_allocates_by_tax_inclusive_share() -> None:
    """
    Lines of 150 and 50 ex-VAT at 25% VAT with a 20 incl-VAT discount.

    The cheap line holds 62.5 of 250 incl-VAT, so it gets 5 incl-VAT,
    which is 4 ex-VAT.
    """
    # input
    lines = [
        create_allocation_line("expensive", unit_ex="150"),
        create_allocation_line("cheap", unit_ex="50"),
    ]

    # act
    allocation = allocate_discount(lines, Decimal("20"))

    # assert
    cheap = allocation.for_line("cheap")
    assert cheap is not None
    assert cheap.share == Decimal("62.5") / Decimal("250")
    assert cheap.allocated_incl_tax == Decimal("5")
    assert cheap.allocated_ex_tax == Decimal("4")
    assert cheap.discount_per_unit_ex_vat == Decimal("4")

    expensive = allocation.for_line("expensive")
    assert expensive is not None
    assert expensive.allocated_ex_tax == Decimal("12")
    assert allocation.total_ex_tax == Decimal("16")
    assert allocation.issue is None


def test_mixed_vat_rates_use_each_lines_own_rate() -> None:
    # input
    lines = [
        create_allocation_line("standard", unit_ex="100", tax_rate="0.25"),
        create_allocation_line("zero", unit_ex="125", tax_rate="0"),
    ]

    # act
    allocation = allocate_discount(lines, Decimal("25"))

    # assert
    standard = allocation.for_line("standard")
    zero = allocation.for_line("zero")
    assert standard is not None and zero is not None
    assert standard.allocated_incl_tax == Decimal("12.5")
    assert standard.allocated_ex_tax == Decimal("10")
    assert zero.allocated_ex_tax == Decimal("12.5")


def test_per_unit_discount_sums_back_to_order_discount() -> None:
    # input
    lines = [
        create_allocation_line("a", unit_ex="33.33", quantity=3),
        create_allocation_line("b", unit_ex="19.99", quantity=7),
        create_allocation_line("c", unit_ex="5", quantity=1),
    ]

    # act
    allocation = allocate_discount(lines, Decimal("17.77"))

    # assert
    reconstructed = sum(
        (
            alloc.discount_per_unit_ex_vat * line.quantity
            for alloc, line in zip(allocation.lines, lines, strict=True)
        ),
        Decimal("0"),
    )
    assert abs(reconstructed - allocation.total_ex_tax) < Decimal("1e-20")


def test_ex_tax_discount_is_not_converted() -> None:
    lines = [create_allocation_line("a", unit_ex="100")]

    allocation = allocate_discount(
        lines, Decimal("10"), discount_includes_tax=False
    )

    assert allocation.total_ex_tax == Decimal("10")


def test_zero_value_order_with_discount_reports_issue() -> None:
    lines = [create_allocation_line("free", unit_ex="0")]

    allocation = allocate_discount(lines, Decimal("10"))

    assert allocation.total_ex_tax == Decimal("0")
    assert allocation.lines[0].allocated_incl_tax == Decimal("0")
    assert allocation.issue is not None


def test_zero_value_order_without_discount_is_clean() -> None:
    allocation = allocate_discount(
        [create_allocation_line("free", unit_ex="0")], Decimal("0")
    )

    assert allocation.issue is None


def test_negative_quantity_raises() -> None:
    line = AllocationLine(
        line_id="bad",
        quantity=-1,
        line_total_incl_tax=Decimal("10"),
        unit_price_ex_vat=Decimal("8"),
        line_tax=Decimal("2"),
    )

    with pytest.raises(InvariantViolationError):
        allocate_discount([line], Decimal("1"))
