"""
Market Data Loader

Pulls perp universe metadata and mid prices from the Hyperliquid Info endpoint.
"""

from decimal import Decimal
from typing import Dict, Optional

from hyperliquid.info import Info

from basket_engine.core.config import Config
from basket_engine.execution.assets import AssetTable


class MarketDataLoader:
    """
    Read-only market data via the SDK Info client.

    Handles:
    - Universe metadata (asset index, szDecimals) for the asset table
    - All mids snapshot for the price feed
    """

    def __init__(self, config: Config, info: Optional[Info] = None):
        """
        Initialize data loader.

        Args:
            config: System configuration
            info: Pre-built Info client (tests pass a stub)
        """
        self.config = config
        self.info = info or Info(config.exchange.api_url, skip_ws=True)
        self._meta: Optional[Dict] = None

    def get_meta(self, refresh: bool = False) -> Dict:
        """Perp universe metadata (cached after the first call)."""
        if self._meta is None or refresh:
            meta = self.info.meta()
            if not isinstance(meta, dict) or "universe" not in meta:
                raise RuntimeError("Unexpected response for meta")
            self._meta = meta
        return self._meta

    def load_asset_table(self, refresh: bool = False) -> AssetTable:
        """Asset table for the order encoder."""
        return AssetTable.from_meta(self.get_meta(refresh))

    def get_all_mids(self) -> Dict[str, Decimal]:
        """
        Fetch current mid prices.

        Returns:
            Dict mapping coin -> mid price. Unparseable or non-finite entries are skipped.
        """
        resp = self.info.all_mids()
        mids: Dict[str, Decimal] = {}
        if not isinstance(resp, dict):
            return mids
        for coin, px in resp.items():
            try:
                mid = Decimal(str(px))
            except ArithmeticError:
                continue
            if mid.is_finite():
                mids[coin] = mid
        return mids
