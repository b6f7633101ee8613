"""Currency and tax normalization.

Pure functions that convert upstream amounts into ledger currency and split
tax out of gross prices. Amounts stay at full ``Decimal`` precision until
``round_money`` is applied at persistence time.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from shopledger.core.errors import InvariantViolationError

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class Money:
    amount: Decimal
    currency: str

    def __add__(self, other: Money) -> Money:
        if other.currency != self.currency:
            raise InvariantViolationError(
                f"Cannot add {other.currency} to {self.currency}"
            )
        return Money(self.amount + other.amount, self.currency)

    def rounded(self) -> Money:
        return Money(round_money(self.amount), self.currency)


def to_decimal(value: object) -> Decimal:
    """Parse an upstream amount. ``None`` and empty strings become zero.

    Floats go through ``str`` so ``0.1`` stays ``Decimal("0.1")``.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvariantViolationError(f"Not a monetary amount: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise InvariantViolationError(f"Not a monetary amount: {value!r}") from e


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_ledger(amount: Decimal, rate: Decimal, ledger_currency: str) -> Money:
    """Convert an amount with the tenant's fixed conversion rate."""
    if rate <= 0:
        raise InvariantViolationError(f"Conversion rate must be positive: {rate}")
    return Money(amount * rate, ledger_currency)


def ex_vat(
    unit_price: Decimal,
    tax_amount: Decimal | None,
    quantity: int,
    taxes_included: bool,
) -> Decimal:
    """Return the tax-exclusive unit price.

    ``tax_amount`` is the tax for the whole line. When prices are quoted
    tax-inclusive the per-unit share of it is subtracted; otherwise the
    price already excludes tax. Missing tax counts as zero.
    """
    if quantity < 0:
        raise InvariantViolationError(f"Negative quantity: {quantity}")
    if not taxes_included or quantity == 0:
        return unit_price
    return unit_price - (tax_amount or ZERO) / quantity


def effective_tax_rate(tax_amount: Decimal, ex_vat_base: Decimal) -> Decimal:
    """Tax as a fraction of the tax-exclusive base; zero when the base is zero."""
    if ex_vat_base == 0:
        return ZERO
    return tax_amount / ex_vat_base


def remove_tax_at_rate(
    amount: Decimal, tax_rate: Decimal, taxes_included: bool
) -> Decimal:
    """Strip tax from ``amount`` using a known rate when prices include tax."""
    if not taxes_included:
        return amount
    return amount / (1 + tax_rate)


def incl_vat_total(
    unit_price: Decimal,
    tax_amount: Decimal,
    quantity: int,
    taxes_included: bool,
) -> Decimal:
    """Tax-inclusive value of a whole line in either upstream tax mode."""
    if taxes_included:
        return unit_price * quantity
    return unit_price * quantity + tax_amount
