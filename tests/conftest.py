"""Shared fixtures: offline config, asset table, signer and a dry-run pipeline."""

import pytest
import pytest_asyncio

from basket_engine.baskets.manager import BasketManager
from basket_engine.core.config import Config
from basket_engine.core.nonce import NonceManager
from basket_engine.execution.assets import AssetInfo, AssetTable
from basket_engine.execution.pipeline import SigningPipeline
from basket_engine.execution.transport import DryRunTransport
from basket_engine.signing.signer import ActionSigner

# Throwaway key, never funded
TEST_KEY = "0x0123456789012345678901234567890123456789012345678901234567890123"


@pytest.fixture(autouse=True)
def _clear_hl_env(monkeypatch):
    for name in ("HL_NETWORK", "HL_ADDRESS", "HL_SECRET_KEY", "HL_VAULT_ADDRESS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    cfg = Config()
    cfg.exchange.secret_key = TEST_KEY
    cfg.execution.retry_delay_sec = 0.0
    cfg.baskets.persist = False
    return cfg


@pytest.fixture
def assets():
    return AssetTable(
        [
            AssetInfo(name="BTC", index=0, sz_decimals=5),
            AssetInfo(name="SOL", index=5, sz_decimals=2),
            AssetInfo(name="ETH", index=4, sz_decimals=4),
        ]
    )


@pytest.fixture
def signer():
    return ActionSigner.from_key(TEST_KEY, is_mainnet=False)


@pytest.fixture
def transport():
    return DryRunTransport(start_oid=1000)


@pytest.fixture
def pipeline(config, signer, assets, transport):
    return SigningPipeline(config, signer, assets, transport, nonce_manager=NonceManager())


@pytest_asyncio.fixture
async def manager(config, pipeline):
    mgr = BasketManager(config, pipeline)
    yield mgr
    mgr.stop()
