"""
Basket data structures (BasketConfig, legs, Basket, BasketExecution).
"""

import copy
from dataclasses import asdict, dataclass, field
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from basket_engine.core.errors import ValidationError
from basket_engine.execution.orders import TIFS
from basket_engine.utils.precision import to_decimal


class BasketState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    TRIGGERED = "triggered"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (BasketState.CANCELLED, BasketState.COMPLETED)


def _opt_decimal(value, name: str, errors: List[str]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        dec = to_decimal(value, name)
    except ValidationError as e:
        errors.extend(e.errors)
        return None
    if dec <= 0:
        errors.append(f"{name} must be > 0")
    return dec


@dataclass(frozen=True)
class EntryLeg:
    """
    Entry order of a basket.

    For market entries `price` is the reference price the aggressive IOC
    limit is derived from.
    """

    is_buy: bool
    size: Decimal
    price: Decimal
    order_type: Literal["limit", "market"] = "limit"
    tif: Literal["Gtc", "Ioc", "Alo"] = "Gtc"

    def __post_init__(self):
        errors: List[str] = []
        if not isinstance(self.is_buy, bool):
            errors.append("entry.is_buy must be a bool")
        size = _opt_decimal(self.size, "entry.size", errors)
        price = _opt_decimal(self.price, "entry.price", errors)
        if self.size is None:
            errors.append("entry.size is required")
        if self.price is None:
            errors.append("entry.price is required")
        if self.order_type not in ("limit", "market"):
            errors.append(f"entry.order_type must be limit or market, got {self.order_type!r}")
        if self.tif not in TIFS:
            errors.append(f"entry.tif must be one of {TIFS}, got {self.tif!r}")
        if errors:
            raise ValidationError(errors)
        object.__setattr__(self, "size", size)
        object.__setattr__(self, "price", price)


@dataclass(frozen=True)
class ExitLeg:
    """
    Stop-loss or take-profit leg. No limit_price means a market exit.

    A take-profit level is sized either by `size` or by `percent` of the
    entry size. A stop-loss carries neither: it always closes whatever is
    left of the position.
    """

    trigger_price: Decimal
    limit_price: Optional[Decimal] = None
    size: Optional[Decimal] = None
    percent: Optional[Decimal] = None

    def __post_init__(self):
        errors: List[str] = []
        trigger = _opt_decimal(self.trigger_price, "trigger_price", errors)
        if self.trigger_price is None:
            errors.append("trigger_price is required")
        limit = _opt_decimal(self.limit_price, "limit_price", errors)
        size = _opt_decimal(self.size, "size", errors)
        percent = _opt_decimal(self.percent, "percent", errors)
        if percent is not None and percent > 100:
            errors.append("percent must be <= 100")
        if self.size is not None and self.percent is not None:
            errors.append("set either size or percent, not both")
        if errors:
            raise ValidationError(errors)
        object.__setattr__(self, "trigger_price", trigger)
        object.__setattr__(self, "limit_price", limit)
        object.__setattr__(self, "size", size)
        object.__setattr__(self, "percent", percent)

    def quantity(self, entry_size: Decimal, sz_decimals: Optional[int] = None) -> Decimal:
        """Size this leg closes, percent levels rounded down to sz_decimals."""
        if self.size is not None:
            qty = self.size
        elif self.percent is not None:
            qty = entry_size * self.percent / 100
        else:
            qty = entry_size
        if sz_decimals is not None:
            qty = qty.quantize(Decimal(1).scaleb(-sz_decimals), rounding=ROUND_DOWN)
        return qty


@dataclass(frozen=True)
class BasketConfig:
    """Entry plus a stop-loss and/or take-profit levels on one symbol."""

    symbol: str
    entry: EntryLeg
    stop_loss: Optional[ExitLeg] = None
    take_profits: Tuple[ExitLeg, ...] = ()
    name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "take_profits", tuple(self.take_profits or ()))

    def validate(self, sz_decimals: Optional[int] = None) -> List[str]:
        """
        Check leg consistency.

        Args:
            sz_decimals: Asset szDecimals, when known, to reject levels that round to zero

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        if not isinstance(self.symbol, str) or not self.symbol:
            errors.append("symbol is required")
        if self.stop_loss is None and not self.take_profits:
            errors.append("basket needs a stop_loss or take_profit leg")

        long = self.entry.is_buy
        entry_px = self.entry.price
        sl = self.stop_loss
        if sl is not None:
            if long and sl.trigger_price >= entry_px:
                errors.append("stop_loss trigger must be below the entry price for a long basket")
            if not long and sl.trigger_price <= entry_px:
                errors.append("stop_loss trigger must be above the entry price for a short basket")
            if sl.size is not None or sl.percent is not None:
                errors.append("stop_loss closes the remaining position and takes no size or percent")

        total = Decimal(0)
        for i, tp in enumerate(self.take_profits):
            if long and tp.trigger_price <= entry_px:
                errors.append(f"take_profits[{i}] trigger must be above the entry price for a long basket")
            if not long and tp.trigger_price >= entry_px:
                errors.append(f"take_profits[{i}] trigger must be below the entry price for a short basket")
            qty = tp.quantity(self.entry.size)
            total += qty
            if sz_decimals is not None and tp.quantity(self.entry.size, sz_decimals) <= 0:
                errors.append(f"take_profits[{i}] size rounds to zero at {sz_decimals} decimals")
        if total > self.entry.size:
            errors.append("take_profits close more than the entry size")
        triggers = [tp.trigger_price for tp in self.take_profits]
        if len(set(triggers)) != len(triggers):
            errors.append("take_profits trigger prices must be distinct")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BasketConfig":
        """
        Build from a plain mapping (YAML basket definitions).

        A single "take_profit" mapping is accepted as a one-level list.

        Example:
            {"symbol": "ETH",
             "entry": {"side": "buy", "size": "0.5", "price": "3000"},
             "stop_loss": {"trigger_price": "2900"},
             "take_profits": [{"trigger_price": "3300", "percent": "50"},
                              {"trigger_price": "3500", "limit_price": "3495", "percent": "50"}]}
        """
        entry = dict(data.get("entry") or {})
        side = entry.pop("side", None)
        if side is not None:
            if side not in ("buy", "sell"):
                raise ValidationError([f"entry.side must be buy or sell, got {side!r}"])
            entry["is_buy"] = side == "buy"

        levels: Sequence[Dict[str, Any]] = data.get("take_profits") or []
        if data.get("take_profit"):
            if levels:
                raise ValidationError(["use take_profit or take_profits, not both"])
            levels = [data["take_profit"]]
        if not isinstance(levels, (list, tuple)):
            raise ValidationError(["take_profits must be a list"])
        try:
            entry_leg = EntryLeg(**entry)
            stop_loss = ExitLeg(**data["stop_loss"]) if data.get("stop_loss") else None
            take_profits = tuple(ExitLeg(**level) for level in levels)
        except TypeError as e:
            raise ValidationError([f"invalid basket definition: {e}"]) from e
        return cls(
            symbol=data.get("symbol", ""),
            entry=entry_leg,
            stop_loss=stop_loss,
            take_profits=take_profits,
            name=data.get("name", ""),
        )


@dataclass
class BasketLogEntry:
    timestamp: int
    action: str
    details: str
    order_id: Optional[int] = None


@dataclass
class Basket:
    """A registered basket. Mutated only by the BasketManager."""

    id: str
    config: BasketConfig
    state: BasketState = BasketState.PENDING
    created_at: int = 0
    updated_at: int = 0
    entry_oid: Optional[int] = None
    entry_filled: bool = False
    entry_pulled: bool = False
    remaining_size: Optional[Decimal] = None
    take_profits_done: List[int] = field(default_factory=list)
    exit_oid: Optional[int] = None
    exit_reason: Optional[str] = None
    last_error: Optional[str] = None
    execution_log: List[BasketLogEntry] = field(default_factory=list)

    def __post_init__(self):
        if self.remaining_size is None:
            self.remaining_size = self.config.entry.size

    @property
    def symbol(self) -> str:
        return self.config.symbol

    def pending_take_profits(self) -> List[int]:
        return [i for i in range(len(self.config.take_profits)) if i not in self.take_profits_done]

    def snapshot(self) -> "Basket":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class BasketExecution:
    """Event emitted to listeners on basket transitions."""

    basket_id: str
    action: Literal["entry_submitted", "stop_loss_triggered", "take_profit_triggered", "exit_failed", "cancelled"]
    timestamp: int
    details: Dict[str, Any] = field(default_factory=dict)
