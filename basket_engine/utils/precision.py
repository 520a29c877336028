"""
Precision helpers for Hyperliquid price/size wire formatting.

All values are handled as Decimal so that the signed payload never carries
binary floating-point artifacts.
"""

from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Union

from basket_engine.core.errors import EncodingError, ValidationError

Number = Union[str, int, float, Decimal]

WIRE_DECIMALS = 8


def to_decimal(value: Number, name: str = "value") -> Decimal:
    """Coerce a caller-supplied number into a finite Decimal."""
    if isinstance(value, bool):
        raise ValidationError([f"{name} must be a decimal, got bool"])
    try:
        if isinstance(value, float):
            # repr() is the shortest round-tripping form, e.g. 0.1 -> "0.1"
            dec = Decimal(repr(value))
        else:
            dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError([f"{name} is not a decimal: {value!r}"])
    if not dec.is_finite():
        raise ValidationError([f"{name} must be finite, got {value!r}"])
    return dec


def decimal_to_wire(value: Number) -> str:
    """
    Render a decimal the way the exchange hashes it.

    Rules:
    - at most 8 fractional digits, otherwise EncodingError
    - trailing zeros stripped, no exponent
    - negative zero rendered as "0"
    """
    dec = value if isinstance(value, Decimal) else to_decimal(value)
    rounded = dec.quantize(Decimal(1).scaleb(-WIRE_DECIMALS), rounding=ROUND_HALF_EVEN)
    if rounded != dec:
        raise EncodingError(f"{value} loses precision when rounded to {WIRE_DECIMALS} decimals")
    if rounded.is_zero():
        return "0"
    return f"{rounded.normalize():f}"


def format_price(px: Number, sz_decimals: int, max_decimals: int = 6) -> str:
    """
    Format price per Hyperliquid rules.

    Rules:
    - ≤5 significant figures (integer prices are always allowed)
    - ≤(MAX_DECIMALS - szDecimals) decimal places

    Args:
        px: Price
        sz_decimals: Asset szDecimals
        max_decimals: MAX_DECIMALS (6 for perps, 8 for spot)

    Returns:
        Formatted price string
    """
    dec = to_decimal(px, "price")
    if dec <= 0:
        raise ValidationError([f"price must be > 0, got {px}"])

    max_dp = max(0, max_decimals - sz_decimals)

    if dec != dec.to_integral_value():
        # Enforce 5 significant figures
        sig = Decimal(f"{dec:.5g}")
        # Then clamp decimals
        if sig.as_tuple().exponent < -max_dp:
            sig = sig.quantize(Decimal(1).scaleb(-max_dp), rounding=ROUND_HALF_EVEN)
        dec = sig

    return decimal_to_wire(dec)


def format_size(sz: Number, sz_decimals: int) -> str:
    """
    Format size per lot precision (rounded down).

    Args:
        sz: Size (quantity)
        sz_decimals: Asset szDecimals

    Returns:
        Formatted size string
    """
    dec = to_decimal(sz, "size")
    rounded = dec.quantize(Decimal(1).scaleb(-sz_decimals), rounding=ROUND_DOWN)
    return decimal_to_wire(rounded)
