"""
Order data structures (OrderRequest, order type variants, actions, ExecutionReport).

Order types form a closed set of variants validated at construction, so wires
built from them never need runtime shape checks.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple, Union

from basket_engine.core.errors import ValidationError
from basket_engine.execution.assets import AssetTable
from basket_engine.utils.precision import decimal_to_wire, to_decimal

TIFS = ("Gtc", "Ioc", "Alo")
TPSL = ("tp", "sl")

_CLOID_RE = re.compile(r"^0x[0-9a-fA-F]{32}$")


class Grouping(str, Enum):
    """Order grouping carried in the order action."""

    NA = "na"
    NORMAL_TPSL = "normalTpsl"
    POSITION_TPSL = "positionTpsl"


@dataclass(frozen=True)
class Cloid:
    """Client order id: 16 bytes as 0x-prefixed hex."""

    raw: str

    def __post_init__(self):
        if not _CLOID_RE.match(self.raw):
            raise ValidationError([f"cloid must be 0x followed by 32 hex chars, got {self.raw!r}"])

    @classmethod
    def from_int(cls, value: int) -> "Cloid":
        return cls(f"0x{value:032x}")

    def to_raw(self) -> str:
        return self.raw


@dataclass(frozen=True)
class LimitOrderType:
    tif: Literal["Gtc", "Ioc", "Alo"] = "Gtc"

    def __post_init__(self):
        if self.tif not in TIFS:
            raise ValidationError([f"tif must be one of {TIFS}, got {self.tif!r}"])

    def to_wire(self) -> Dict[str, Any]:
        return {"limit": {"tif": self.tif}}


@dataclass(frozen=True)
class MarketOrderType:
    """Market order: an aggressive IOC limit (the exchange has no native market type)."""

    def to_wire(self) -> Dict[str, Any]:
        return {"limit": {"tif": "Ioc"}}


@dataclass(frozen=True)
class TriggerOrderType:
    trigger_price: Decimal
    tpsl: Literal["tp", "sl"]
    is_market: bool = True

    def __post_init__(self):
        errors = []
        try:
            px = to_decimal(self.trigger_price, "trigger_price")
            object.__setattr__(self, "trigger_price", px)
            if px <= 0:
                errors.append("trigger_price must be > 0")
        except ValidationError as e:
            errors.extend(e.errors)
        if self.tpsl not in TPSL:
            errors.append(f"tpsl must be one of {TPSL}, got {self.tpsl!r}")
        if not isinstance(self.is_market, bool):
            errors.append("is_market must be a bool")
        if errors:
            raise ValidationError(errors)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "trigger": {
                "isMarket": self.is_market,
                "triggerPx": decimal_to_wire(self.trigger_price),
                "tpsl": self.tpsl,
            }
        }


OrderType = Union[LimitOrderType, MarketOrderType, TriggerOrderType]


@dataclass(frozen=True)
class OrderRequest:
    """
    A single order as the caller expresses it (symbol + decimals).

    Immutable once constructed; size and limit_price are coerced to Decimal.
    """

    asset: str
    is_buy: bool
    size: Decimal
    limit_price: Decimal
    reduce_only: bool = False
    order_type: OrderType = field(default_factory=LimitOrderType)
    cloid: Optional[Cloid] = None

    def __post_init__(self):
        errors: List[str] = []
        if not isinstance(self.asset, str) or not self.asset:
            errors.append("asset must be a non-empty symbol")
        if not isinstance(self.is_buy, bool):
            errors.append("is_buy must be a bool")
        if not isinstance(self.reduce_only, bool):
            errors.append("reduce_only must be a bool")
        for name in ("size", "limit_price"):
            try:
                dec = to_decimal(getattr(self, name), name)
            except ValidationError as e:
                errors.extend(e.errors)
                continue
            if dec <= 0:
                errors.append(f"{name} must be > 0")
            object.__setattr__(self, name, dec)
        if not isinstance(self.order_type, (LimitOrderType, MarketOrderType, TriggerOrderType)):
            errors.append(f"unsupported order_type {self.order_type!r}")
        if self.cloid is not None and not isinstance(self.cloid, Cloid):
            errors.append("cloid must be a Cloid")
        if errors:
            raise ValidationError(errors)

    def to_wire(self, assets: AssetTable) -> Dict[str, Any]:
        """Exchange-keyed wire dict. Key order is part of the signed encoding."""
        wire: Dict[str, Any] = {
            "a": assets.index_of(self.asset),
            "b": self.is_buy,
            "p": decimal_to_wire(self.limit_price),
            "s": decimal_to_wire(self.size),
            "r": self.reduce_only,
            "t": self.order_type.to_wire(),
        }
        if self.cloid is not None:
            wire["c"] = self.cloid.to_raw()
        return wire


@dataclass(frozen=True)
class OrderAction:
    """Ordered batch of order wires. Order of `orders` is part of the signed payload."""

    orders: Tuple[Dict[str, Any], ...]
    grouping: Grouping = Grouping.NA

    @classmethod
    def from_requests(
        cls,
        requests: Sequence[OrderRequest],
        assets: AssetTable,
        grouping: Grouping = Grouping.NA,
    ) -> "OrderAction":
        if not requests:
            raise ValidationError(["order action needs at least one order"])
        return cls(orders=tuple(r.to_wire(assets) for r in requests), grouping=Grouping(grouping))

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "order",
            "orders": [dict(o) for o in self.orders],
            "grouping": self.grouping.value,
        }


@dataclass(frozen=True)
class CancelAction:
    """Cancel resting orders by (asset index, oid)."""

    cancels: Tuple[Tuple[int, int], ...]

    @classmethod
    def from_oids(cls, assets: AssetTable, items: Iterable[Tuple[str, int]]) -> "CancelAction":
        cancels = tuple((assets.index_of(symbol), int(oid)) for symbol, oid in items)
        if not cancels:
            raise ValidationError(["cancel action needs at least one order"])
        return cls(cancels=cancels)

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "cancel", "cancels": [{"a": a, "o": o} for a, o in self.cancels]}


Action = Union[OrderAction, CancelAction]


@dataclass
class OrderStatus:
    """Per-order outcome from an exchange response."""

    status: Literal["resting", "filled", "success", "error"]
    oid: Optional[int] = None
    filled_sz: Decimal = Decimal(0)
    avg_px: Optional[Decimal] = None
    error_msg: Optional[str] = None


@dataclass
class ExecutionReport:
    """
    Submission result after signing and posting an action.

    Only accepted submissions produce a report; rejections raise SubmissionError.
    """

    nonce: int
    statuses: List[OrderStatus] = field(default_factory=list)
    response: Any = None
    dry_run: bool = False

    @property
    def oids(self) -> List[int]:
        return [s.oid for s in self.statuses if s.oid is not None]

    @property
    def first_oid(self) -> Optional[int]:
        oids = self.oids
        return oids[0] if oids else None
