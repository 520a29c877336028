"""Baskets: entry + stop-loss/take-profit registry."""

from basket_engine.baskets.models import (
    Basket,
    BasketConfig,
    BasketExecution,
    BasketState,
    EntryLeg,
    ExitLeg,
)
from basket_engine.baskets.manager import (
    BasketManager,
    get_basket_manager,
    init_basket_manager,
    reset_basket_manager,
)

__all__ = [
    "Basket",
    "BasketConfig",
    "BasketExecution",
    "BasketState",
    "EntryLeg",
    "ExitLeg",
    "BasketManager",
    "get_basket_manager",
    "init_basket_manager",
    "reset_basket_manager",
]
