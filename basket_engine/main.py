"""
Main entry point for the basket engine.

Wires Config -> Asset table -> Signer -> Pipeline -> Basket manager -> Price poller.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List

import yaml
from dotenv import load_dotenv

from basket_engine.baskets.manager import BasketManager, init_basket_manager, reset_basket_manager
from basket_engine.baskets.models import BasketConfig
from basket_engine.core.config import Config
from basket_engine.core.errors import BasketEngineError, ValidationError
from basket_engine.core.feed import PricePoller
from basket_engine.data.loader import MarketDataLoader
from basket_engine.execution.pipeline import SigningPipeline
from basket_engine.execution.transport import DryRunTransport, HyperliquidTransport
from basket_engine.monitoring.logs import setup_logging
from basket_engine.monitoring.metrics import MetricsCollector
from basket_engine.signing.signer import ActionSigner
from basket_engine.utils.state_store import StateStore

logger = logging.getLogger("basket_engine.main")


def load_basket_configs(path: str) -> List[BasketConfig]:
    """
    Read basket definitions from YAML.

    Accepts either a top-level list or a mapping with a `baskets` list.
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("baskets", [])
    if not isinstance(data, list):
        raise ValidationError([f"{path}: expected a list of baskets"])
    return [BasketConfig.from_dict(item) for item in data]


class BasketEngineSystem:
    """
    Main orchestrator for the basket engine.

    Builds every component from the config and runs the tick loop.
    """

    def __init__(self, config: Config, dry_run: bool = False):
        self.config = config
        self.dry_run = dry_run or config.execution.dry_run

        errors = config.validate()
        if errors:
            logger.error("Configuration validation failed:")
            for err in errors:
                logger.error("  - %s", err)
            sys.exit(1)

        logger.info("Starting %s basket engine%s", config.exchange.network, " (dry run)" if self.dry_run else "")

        self.loader = MarketDataLoader(config)
        self.assets = self.loader.load_asset_table()
        logger.info("Loaded %d assets", len(self.assets))

        self.signer = ActionSigner.from_key(config.exchange.secret_key, is_mainnet=config.exchange.is_mainnet)
        if self.dry_run:
            self.transport = DryRunTransport()
        else:
            self.transport = HyperliquidTransport(config.exchange.api_url)

        self.metrics = MetricsCollector(config)
        self.pipeline = SigningPipeline(config, self.signer, self.assets, self.transport, metrics=self.metrics)
        self.state_store = StateStore(config.baskets.state_dir) if config.baskets.persist else None
        self.manager: BasketManager = init_basket_manager(
            config, self.pipeline, state_store=self.state_store, metrics=self.metrics
        )
        self.poller = PricePoller(config, self.loader, self.manager)

        logger.info("Signer %s ready", self.signer.address)

    async def open_baskets(self, basket_configs: List[BasketConfig]) -> List[str]:
        """Register baskets and submit their entries. Returns ids of baskets that went ACTIVE."""
        opened = []
        for basket_config in basket_configs:
            try:
                basket_id = self.manager.create_basket(basket_config)
            except ValidationError as e:
                logger.error("Basket %s rejected: %s", basket_config.name or basket_config.symbol, e)
                continue
            if await self.manager.execute_entry(basket_id):
                opened.append(basket_id)
            else:
                basket = self.manager.get_basket(basket_id)
                logger.error("Entry for %s failed: %s", basket_id, basket.last_error if basket else "unknown")
                self.manager.cancel_basket(basket_id)
        return opened

    async def run(self, basket_configs: List[BasketConfig]) -> None:
        """Open baskets and poll prices until every basket is closed."""
        opened = await self.open_baskets(basket_configs)
        logger.info("%d basket(s) active", len(opened))
        if not opened:
            return
        try:
            await self.poller.run_forever()
        finally:
            self.poller.stop()
            await self.manager.close()
            if self.state_store is not None:
                self.state_store.save_snapshot("baskets", [b.to_dict() for b in self.manager.get_history()])
            logger.info("Metrics: %s", self.metrics.snapshot()["counters"])
            reset_basket_manager()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Hyperliquid basket engine")
    parser.add_argument("--config", type=str, default="", help="Path to YAML config file")
    parser.add_argument("--baskets", type=str, required=True, help="Path to YAML basket definitions")
    parser.add_argument("--dry-run", action="store_true", help="Sign actions but never send them")
    args = parser.parse_args()

    # Load .env before Config so HL_* overrides apply
    load_dotenv(dotenv_path=Path.cwd() / ".env")

    config = Config.from_yaml(args.config) if args.config else Config()
    setup_logging(config)

    try:
        basket_configs = load_basket_configs(args.baskets)
        system = BasketEngineSystem(config, dry_run=args.dry_run)
        asyncio.run(system.run(basket_configs))
    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    except BasketEngineError as e:
        logger.error("Fatal: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
