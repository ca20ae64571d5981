"""
Amount parsing and base-unit conversion.

Amounts are Decimal values in the asset's natural unit (ETH, BTC, token
units). They must fit a 256-bit integer once scaled by 10**decimals.
"""

from __future__ import annotations

from decimal import Context, Decimal, InvalidOperation

from backend_txguard.core.exceptions import InputMalformed

MAX_BASE_UNITS = 2**256 - 1
MAX_BASE_UNITS_DIGITS = len(str(MAX_BASE_UNITS)) - 1

# Wide enough for any 256-bit value scaled by up to 77 decimals
_WIDE = Context(prec=160)


def parse_amount(raw: str | None, decimals: int) -> Decimal:
    """
    Parse a decimal amount string. Zero is accepted (AmountSanity fails it);
    empty, non-numeric, non-finite, negative, over-precise and overflowing
    values raise InputMalformed.
    """
    text = (raw or "").strip()
    if not text:
        raise InputMalformed("amount is required", field="amount")
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise InputMalformed(f"amount is not a number: {text!r}", field="amount") from None
    if not value.is_finite():
        raise InputMalformed("amount must be finite", field="amount")
    if value.is_signed() and value != 0:
        raise InputMalformed("amount must not be negative", field="amount")
    try:
        too_large = (
            (value != 0 and value.adjusted() + decimals > MAX_BASE_UNITS_DIGITS)
            or to_base_units(abs(value), decimals) > MAX_BASE_UNITS
        )
        exponent = value.as_tuple().exponent
        over_precise = False
        if isinstance(exponent, int) and exponent < -decimals:
            step = Decimal(1).scaleb(-decimals)
            over_precise = value != value.quantize(step, context=_WIDE)
    except ArithmeticError:
        # decimal.Overflow / InvalidOperation from an extreme exponent
        raise InputMalformed("amount does not fit in 256 bits", field="amount") from None
    if too_large:
        raise InputMalformed("amount does not fit in 256 bits", field="amount")
    if over_precise:
        raise InputMalformed(f"amount has more than {decimals} decimal places", field="amount")
    return abs(value)


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Scale to the smallest unit (wei, satoshi). Truncates anything below one unit."""
    return int(amount.scaleb(decimals, context=_WIDE))


def from_base_units(value: int, decimals: int) -> Decimal:
    """Exact conversion from the smallest unit to the natural unit."""
    return Decimal(value).scaleb(-decimals, context=_WIDE)


def format_amount(amount: Decimal) -> str:
    """Plain (non-exponent) decimal string without trailing zeros."""
    if amount == 0:
        return "0"
    return format(amount.normalize(context=_WIDE), "f")
