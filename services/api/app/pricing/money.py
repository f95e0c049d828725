from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")


def round_half_up(value: Decimal) -> int:
    """Round a fractional cent amount to a whole cent (half-up)."""

    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(amount: Decimal | str | int | float) -> int:
    """Convert a dollar amount from an I/O boundary into integer cents.

    Floats are routed through ``str`` so ``10.1`` means ten dollars ten cents,
    not its binary approximation.
    """

    if isinstance(amount, float):
        amount = str(amount)
    dollars = Decimal(amount)
    return int((dollars.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def to_dollars(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


def format_money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${to_dollars(abs(cents)):,.2f}"
