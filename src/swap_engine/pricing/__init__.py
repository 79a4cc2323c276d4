"""Price sources used by the trailing-stop engine."""

from swap_engine.pricing.coingecko import CoinGeckoPriceSource
from swap_engine.pricing.provider import PriceSource

__all__ = ["CoinGeckoPriceSource", "PriceSource"]
