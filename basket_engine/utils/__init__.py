"""Utilities: precision helpers, state store."""

from basket_engine.utils.precision import decimal_to_wire, format_price, format_size, to_decimal
from basket_engine.utils.state_store import StateStore

__all__ = [
    "decimal_to_wire",
    "format_price",
    "format_size",
    "to_decimal",
    "StateStore",
]
