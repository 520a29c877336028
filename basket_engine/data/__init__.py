"""Market data access."""

from basket_engine.data.loader import MarketDataLoader

__all__ = ["MarketDataLoader"]
