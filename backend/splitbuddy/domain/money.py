# backend/splitbuddy/domain/money.py
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from fractions import Fraction
from typing import Iterable, Union

Number = Union[Decimal, Fraction, int]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class MoneyError(ValueError):
    """Raised when currency/money parsing or formatting fails."""


@dataclass(frozen=True)
class Money:
    """
    Display value for a rounded amount.
    No floats anywhere.
    """
    amount: Decimal
    currency: str = "USD"

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            raise MoneyError("Money.amount must be a Decimal")
        if not isinstance(self.currency, str) or not self.currency.strip():
            raise MoneyError("Money.currency must be a non-empty string")

    def format(self, symbol: str = "$") -> str:
        """
        Format as a string like "$12.34".
        """
        amount = round_money(self.amount)
        sign = "-" if amount < 0 else ""
        return f"{sign}{symbol}{abs(amount)}"


# User-entered amounts:
# - Supports $ prefix, optional spaces, decimal "." or ","
# - Rejects thousands separators to avoid guessing ("1,234.56")
_AMOUNT_TOKEN_RE = re.compile(r"^\s*\$?\s*(\d{1,7})(?:[.,](\d{1,2}))?\s*$")


def parse_amount(
    value: Union[str, int, float, Decimal],
    *,
    max_amount: Decimal = Decimal("10000000.00"),
) -> Decimal:
    """
    Parse a user-entered amount (price or tax rate) into a Decimal.

    Accepts examples:
      "12" -> Decimal("12")
      "12.5" -> Decimal("12.5")
      "$12.34" -> Decimal("12.34")
      "12,34" -> Decimal("12.34")  (decimal comma)
      12.5 -> Decimal("12.5")

    Rejects:
      "1,234.56" (thousands separator ambiguity)
      "12.345"
      "-1"
      "abc"
    """
    if isinstance(value, bool):
        raise MoneyError("amount must not be a boolean")

    if isinstance(value, (int, float, Decimal)):
        try:
            d = value if isinstance(value, Decimal) else Decimal(str(value))
        except InvalidOperation as e:
            raise MoneyError(f"invalid amount: {value}") from e
        if not d.is_finite():
            raise MoneyError(f"invalid amount: {value}")
        if d < 0:
            raise MoneyError("negative amounts are not allowed")
        if d > max_amount:
            raise MoneyError("amount exceeds safety limit")
        return d

    if not isinstance(value, str):
        raise MoneyError("amount must be a string or a number")

    s = value.strip()
    if s == "":
        raise MoneyError("amount is empty")

    if re.search(r"\d,\d{3}", s):
        raise MoneyError(f"ambiguous thousands separator format: {value}")

    m = _AMOUNT_TOKEN_RE.match(s)
    if not m:
        raise MoneyError(f"invalid amount: {value}")

    whole, decimals = m.group(1), m.group(2)
    d = Decimal(f"{whole}.{decimals}") if decimals is not None else Decimal(whole)
    if d > max_amount:
        raise MoneyError("amount exceeds safety limit")
    return d


def round_money(value: Number) -> Decimal:
    """
    Round a Decimal or an exact Fraction to cents, half-up (away from zero).

    This is the single rounding point of the pipeline: allocation keeps exact
    Fractions and only calls this when an amount is stored or displayed.
    """
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    if isinstance(value, int):
        return Decimal(value).quantize(CENT)
    if not isinstance(value, Fraction):
        raise MoneyError("value must be a Decimal, Fraction or int")

    scaled = abs(value) * 100
    cents, remainder = divmod(scaled.numerator, scaled.denominator)
    if 2 * remainder >= scaled.denominator:
        cents += 1
    if value < 0:
        cents = -cents
    return Decimal(cents).scaleb(-2).quantize(CENT)


def to_fraction(value: Union[Decimal, int]) -> Fraction:
    """Exact conversion of a Decimal amount for allocation math."""
    if isinstance(value, Decimal) and not value.is_finite():
        raise MoneyError(f"invalid amount: {value}")
    return Fraction(value)


def tax_multiplier(tax_rate_percent: Decimal) -> Fraction:
    return 1 + to_fraction(tax_rate_percent) / 100


def sum_money(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for v in values:
        if not isinstance(v, Decimal):
            raise MoneyError("all values must be Decimal amounts")
        total += v
    return total


def format_money(amount: Number, *, symbol: str = "$") -> str:
    return Money(amount=round_money(amount)).format(symbol=symbol)


def money_to_str(amount: Number) -> str:
    """Plain two-decimal string used in records and JSON ("13.75")."""
    return str(round_money(amount))
