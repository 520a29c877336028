"""
Basket Engine for Hyperliquid

Signs and submits Hyperliquid L1 actions and manages entry + stop-loss /
take-profit baskets driven by price ticks.

Components:
- Signing: msgpack action encoder, action hash, EIP-712 phantom agent signer
- Execution: order model, payload validator, split order planner, pipeline
- Baskets: basket registry and per-symbol trigger evaluation
- Price Feed: mid price poller feeding the basket manager
- State Store: JSONL basket event log and snapshots
- Monitoring: metrics and logging setup
"""

__version__ = "0.1.0"

from basket_engine.core.config import Config

__all__ = [
    "Config",
]
