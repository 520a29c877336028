"""
Split Order Planner

Spreads a parent quantity over N limit legs between a min and max price.
Quantity weighting is a linear ramp toward the biased end:

    Mid:    1, 1, ..., 1
    Lower:  n, n-1, ..., 1   (leg 0 sits at min_price)
    Upper:  1, 2, ..., n

Each leg is rounded down to the quantity precision and the remainder goes to
the heaviest leg, so the legs always sum to the parent quantity.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional

from basket_engine.core.errors import ValidationError
from basket_engine.execution.orders import LimitOrderType, OrderRequest
from basket_engine.utils.precision import Number, format_price, to_decimal

MIN_SPLITS = 2
MAX_SPLITS = 10
DEFAULT_QUANTITY_DECIMALS = 12


class ScaleBias(str, Enum):
    LOWER = "Lower"
    MID = "Mid"
    UPPER = "Upper"


@dataclass(frozen=True)
class SplitLeg:
    price: Decimal
    quantity: Decimal


def _weights(split_count: int, bias: ScaleBias) -> List[int]:
    if bias is ScaleBias.LOWER:
        return list(range(split_count, 0, -1))
    if bias is ScaleBias.UPPER:
        return list(range(1, split_count + 1))
    return [1] * split_count


def plan_split(
    min_price: Number,
    max_price: Number,
    split_count: int,
    scale_bias: "ScaleBias | str",
    total_quantity: Number,
    sz_decimals: Optional[int] = None,
) -> List[SplitLeg]:
    """
    Plan split-order legs.

    Args:
        min_price: Lowest leg price
        max_price: Highest leg price (may equal min_price)
        split_count: Number of legs, 2..10
        scale_bias: Lower / Mid / Upper
        total_quantity: Parent quantity to distribute
        sz_decimals: Quantity precision (asset szDecimals); 12 when unknown

    Returns:
        Legs ordered by non-decreasing price
    """
    errors: List[str] = []
    lo = hi = total = None
    try:
        lo = to_decimal(min_price, "min_price")
        hi = to_decimal(max_price, "max_price")
        total = to_decimal(total_quantity, "total_quantity")
    except ValidationError as e:
        errors.extend(e.errors)
    if isinstance(split_count, bool) or not isinstance(split_count, int):
        errors.append("split_count must be an integer")
    elif not MIN_SPLITS <= split_count <= MAX_SPLITS:
        errors.append(f"split_count must be in [{MIN_SPLITS}, {MAX_SPLITS}], got {split_count}")
    try:
        bias = ScaleBias(scale_bias)
    except ValueError:
        errors.append(f"scale_bias must be one of Lower, Mid, Upper, got {scale_bias!r}")
    if lo is not None and hi is not None:
        if lo <= 0:
            errors.append("min_price must be > 0")
        if lo > hi:
            errors.append("min_price must be <= max_price")
    if total is not None and total <= 0:
        errors.append("total_quantity must be > 0")
    if errors:
        raise ValidationError(errors)

    decimals = DEFAULT_QUANTITY_DECIMALS if sz_decimals is None else sz_decimals
    quantum = Decimal(1).scaleb(-decimals)

    step = (hi - lo) / (split_count - 1)
    prices = [lo + step * i for i in range(split_count - 1)] + [hi]

    weights = _weights(split_count, bias)
    weight_sum = sum(weights)
    try:
        quantities = [(total * w / weight_sum).quantize(quantum, rounding=ROUND_DOWN) for w in weights]
    except InvalidOperation:
        raise ValidationError([f"total_quantity {total} cannot be expressed with {decimals} decimals"]) from None
    heaviest = weights.index(max(weights))
    quantities[heaviest] += total - sum(quantities)

    return [SplitLeg(price=p, quantity=q) for p, q in zip(prices, quantities)]


def split_order_requests(
    asset: str,
    is_buy: bool,
    legs: List[SplitLeg],
    sz_decimals: Optional[int] = None,
    tif: str = "Gtc",
    reduce_only: bool = False,
    max_decimals: int = 6,
) -> List[OrderRequest]:
    """
    Turn planned legs into limit order requests.

    Prices are snapped to exchange tick rules when sz_decimals is known.
    Legs whose quantity rounded to zero are dropped.
    """
    requests = []
    for leg in legs:
        if leg.quantity <= 0:
            continue
        price = format_price(leg.price, sz_decimals, max_decimals) if sz_decimals is not None else leg.price
        requests.append(
            OrderRequest(
                asset=asset,
                is_buy=is_buy,
                size=leg.quantity,
                limit_price=price,
                reduce_only=reduce_only,
                order_type=LimitOrderType(tif),
            )
        )
    return requests
