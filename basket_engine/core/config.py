"""
Configuration management for the basket engine.

Nested dataclasses with defaults, loadable from YAML/dict, with environment
variable overrides for exchange credentials.
"""

import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Literal, Optional


@dataclass
class ExchangeConfig:
    """Hyperliquid connection and account settings."""

    network: Literal["testnet", "mainnet"] = "testnet"
    address: str = ""  # Account address used for reads (from env)
    secret_key: str = ""  # Signing key (API wallet or main wallet, from env)
    vault_address: Optional[str] = None  # Sign on behalf of a vault/sub-account

    # API endpoint (auto-set by network)
    api_url: str = ""

    def __post_init__(self):
        """Set API URL based on network."""
        from hyperliquid.utils import constants

        if self.network == "testnet":
            self.api_url = constants.TESTNET_API_URL
        else:
            self.api_url = constants.MAINNET_API_URL

    @property
    def is_mainnet(self) -> bool:
        return self.network == "mainnet"


@dataclass
class SigningConfig:
    """L1 action signing options."""

    expires_after_ms: Optional[int] = None  # Relative expiry window; None = no expiry


@dataclass
class ExecutionConfig:
    """Submission behaviour."""

    max_submit_attempts: int = 3  # Transport retries (exchange rejections are never retried)
    retry_delay_sec: float = 0.5  # Initial backoff, doubled per attempt
    max_decimals: int = 6  # Hyperliquid perp MAX_DECIMALS
    dry_run: bool = False


@dataclass
class SplitConfig:
    """Split order planner defaults."""

    default_bias: Literal["Lower", "Mid", "Upper"] = "Mid"


@dataclass
class BasketManagerConfig:
    """Basket manager behaviour."""

    market_slippage: float = 0.05  # Aggressive IOC price offset for market exits
    history_size: int = 100  # Terminal baskets kept in memory
    persist: bool = True
    state_dir: str = "data/baskets"


@dataclass
class FeedConfig:
    """Price feed polling."""

    poll_interval_sec: float = 1.0


@dataclass
class MonitoringConfig:
    """Logging and metrics."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: str = "logs"
    metrics_enabled: bool = True


def _build(dc_type, data):
    if not is_dataclass(dc_type) or not isinstance(data, dict):
        return data
    kwargs = {}
    for f in fields(dc_type):
        if f.name in data:
            val = data[f.name]
            if hasattr(f.type, "__dataclass_fields__"):
                kwargs[f.name] = _build(f.type, val)
            else:
                kwargs[f.name] = val
    return dc_type(**kwargs)


@dataclass
class Config:
    """
    Complete engine configuration.

    Environment variables (override config file):
    - HL_NETWORK: "testnet" or "mainnet"
    - HL_ADDRESS: Account address
    - HL_SECRET_KEY: Signing private key
    - HL_VAULT_ADDRESS: Optional vault/sub-account address
    """

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    split: SplitConfig = field(default_factory=SplitConfig)
    baskets: BasketManagerConfig = field(default_factory=BasketManagerConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def __post_init__(self):
        """Load environment variable overrides."""
        if os.getenv("HL_NETWORK"):
            self.exchange.network = os.getenv("HL_NETWORK", "testnet")

        if os.getenv("HL_ADDRESS"):
            self.exchange.address = os.getenv("HL_ADDRESS", "")

        if os.getenv("HL_SECRET_KEY"):
            self.exchange.secret_key = os.getenv("HL_SECRET_KEY", "")

        if os.getenv("HL_VAULT_ADDRESS"):
            self.exchange.vault_address = os.getenv("HL_VAULT_ADDRESS")

        # Re-initialize to set API URL
        self.exchange.__post_init__()

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load config from YAML file."""
        import yaml

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Load config from dictionary."""
        return _build(cls, data)

    def validate(self) -> list[str]:
        """
        Validate configuration parameters.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.exchange.network not in ("testnet", "mainnet"):
            errors.append("exchange.network must be 'testnet' or 'mainnet'")

        if not self.exchange.secret_key:
            errors.append("HL_SECRET_KEY environment variable required")

        vault = self.exchange.vault_address
        if vault and not (vault.startswith("0x") and len(vault) == 42):
            errors.append("exchange.vault_address must be a 0x-prefixed 20-byte hex address")

        if self.signing.expires_after_ms is not None and self.signing.expires_after_ms <= 0:
            errors.append("signing.expires_after_ms must be > 0")

        if self.execution.max_submit_attempts < 1:
            errors.append("execution.max_submit_attempts must be >= 1")

        if self.split.default_bias not in ("Lower", "Mid", "Upper"):
            errors.append("split.default_bias must be one of Lower, Mid, Upper")

        if not (0.0 < self.baskets.market_slippage < 0.5):
            errors.append("baskets.market_slippage must be in (0, 0.5)")

        if self.feed.poll_interval_sec <= 0:
            errors.append("feed.poll_interval_sec must be > 0")

        return errors

