"""
Price feed: polls mid prices and forwards them as ticks to the basket manager.

Only symbols with a live basket are forwarded. Polling errors are logged and
the loop keeps running; the manager is never called with a stale snapshot.
"""

import asyncio
import logging
from typing import Optional

from basket_engine.baskets.manager import BasketManager
from basket_engine.core.config import Config
from basket_engine.data.loader import MarketDataLoader

logger = logging.getLogger(__name__)


class PricePoller:
    """
    Fixed-interval mid price poller.

    The blocking SDK call runs in a worker thread so the event loop keeps
    processing ticks and exit submissions while a poll is in flight.
    """

    def __init__(self, config: Config, loader: MarketDataLoader, manager: BasketManager):
        self.config = config
        self.loader = loader
        self.manager = manager
        self.running = False
        self.polls = 0
        self._stopped: Optional[asyncio.Event] = None

    async def poll_once(self) -> int:
        """
        Fetch mids and push ticks for every watched symbol.

        Returns:
            Number of ticks forwarded
        """
        watched = {b.symbol for b in self.manager.get_all_baskets()}
        if not watched:
            return 0
        mids = await asyncio.to_thread(self.loader.get_all_mids)
        forwarded = 0
        for symbol in sorted(watched):
            px = mids.get(symbol)
            if px is None or px <= 0:
                logger.debug("No usable mid for %s: %s", symbol, px)
                continue
            await self.manager.on_price_tick(symbol, px)
            forwarded += 1
        self.polls += 1
        return forwarded

    async def run_forever(self) -> None:
        """Poll until stop() is called or no baskets remain."""
        self.running = True
        self._stopped = asyncio.Event()
        interval = self.config.feed.poll_interval_sec
        logger.info("Price poller started. Interval=%ss", interval)

        while self.running:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Price poll failed")

            if not self.manager.get_all_baskets():
                logger.info("No live baskets left; price poller exiting")
                break
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        self.running = False

    def stop(self) -> None:
        """Stop the polling loop."""
        logger.info("Price poller stopping")
        self.running = False
        if self._stopped is not None:
            self._stopped.set()
