"""Configuration loading and validation."""

from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

MAX_TRAILING_PERCENTAGE = 50.0


class TrailingStopConfig(BaseModel):
    """Trailing-stop order configuration."""

    max_trailing_pct: float = Field(default=MAX_TRAILING_PERCENTAGE, gt=0, le=MAX_TRAILING_PERCENTAGE)
    default_network: str = "ethereum"
    validate_addresses: bool = True
    expire_after_hours: int | None = None


class BatchConfig(BaseModel):
    """Portfolio batch (multi-leg swap) configuration."""

    max_legs: int = 10
    require_full_allocation: bool = False
    default_chain: str = "ethereum"
    funding_asset: str = "USDC"
    min_rebalance_trade_usd: float = Field(default=10.0, ge=0)


class PriceFeedConfig(BaseModel):
    """Price source configuration."""

    provider: Literal["coingecko"] = "coingecko"
    base_url: str = "https://api.coingecko.com/api/v3"
    cache_ttl: int = 60
    timeout: int = 10


class SwapProviderConfig(BaseModel):
    """Live swap provider configuration."""

    base_url: str = "https://sideshift.ai/api/v2"
    api_key_env: str = "SIDESHIFT_SECRET"
    affiliate_id_env: str = "SIDESHIFT_AFFILIATE_ID"
    user_ip: str = "127.0.0.1"
    timeout: int = 30


class PaperConfig(BaseModel):
    """Simulated swap provider configuration."""

    fee_pct: float = 0.005
    failing_assets: list[str] = Field(default_factory=list)


class MonitoringConfig(BaseModel):
    """Logging, alerting and API server configuration."""

    structured_logging: bool = False
    log_file: str | None = None
    alert_webhooks: list[str] = Field(default_factory=list)
    api_host: str = "0.0.0.0"
    api_port: int = 8080


class AppConfig(BaseModel):
    """Top-level application configuration."""

    mode: Literal["paper", "live"] = "paper"
    poll_interval: int = 60
    trailing_stop: TrailingStopConfig = Field(default_factory=TrailingStopConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    price_feed: PriceFeedConfig = Field(default_factory=PriceFeedConfig)
    swap_provider: SwapProviderConfig = Field(default_factory=SwapProviderConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


def load_config(path: Path) -> AppConfig:
    """Load config from a YAML file."""
    load_dotenv(path.parent / ".env", override=False)
    return AppConfig(**(yaml.safe_load(path.read_text()) or {}))
