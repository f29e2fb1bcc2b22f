# Overview: Fixed-point money helpers; every persisted amount is an integer count of minor units.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENTS_PER_UNIT = 100
RATE_QUANTUM = Decimal("0.0001")


def cents_to_str(cents: int | None) -> str | None:
    """Render minor units as a two-decimal string ("2000" -> "20.00")."""
    if cents is None:
        return None
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(int(cents)), CENTS_PER_UNIT)
    return f"{sign}{whole}.{frac:02d}"


def rate_to_str(rate: Decimal | None) -> str | None:
    if rate is None:
        return None
    return str(Decimal(rate).quantize(RATE_QUANTUM))


def convert_cents(amount_cents: int, rate: Decimal) -> int:
    """
    Multiply an amount by an exchange rate and round to the nearest cent (half-up).

    Decimal arithmetic only; the result is exact up to the final rounding step.
    """
    value = Decimal(int(amount_cents)) * Decimal(rate)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_base_cents(
    amount_cents: int,
    *,
    currency: str,
    exchange_rate: Decimal | None,
    base_currency: str,
) -> int:
    """
    Express an amount held in `currency` in the base currency.

    exchange_rate is base units per one unit of `currency` and is required
    whenever currency differs from the base.
    """
    if currency == base_currency:
        return int(amount_cents)
    if exchange_rate is None:
        raise ValueError(f"exchange rate required to convert {currency} to {base_currency}")
    return convert_cents(amount_cents, exchange_rate)


def split_by_currency(amount_cents: int, currency: str) -> tuple[int, int]:
    """Return (usd_cents, lyd_cents) with the amount placed in its own currency column."""
    if currency == "USD":
        return int(amount_cents), 0
    if currency == "LYD":
        return 0, int(amount_cents)
    raise ValueError(f"unsupported currency {currency}")
