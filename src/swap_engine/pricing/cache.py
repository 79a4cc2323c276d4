"""Short-lived cache for USD prices, keyed by (asset, network)."""

import time
from decimal import Decimal


class PriceCache:
    """Keep recently fetched prices so repeated ticks do not hit rate limits."""

    def __init__(self, ttl: float = 60.0) -> None:
        self._ttl = ttl
        self._prices: dict[tuple[str, str], tuple[Decimal, float]] = {}

    def get(self, asset: str, network: str) -> Decimal | None:
        key = (asset.upper(), network.lower())
        entry = self._prices.get(key)
        if entry is None:
            return None
        price, fetched_at = entry
        if time.monotonic() - fetched_at > self._ttl:
            del self._prices[key]
            return None
        return price

    def put(self, asset: str, network: str, price: Decimal) -> None:
        self._prices[(asset.upper(), network.lower())] = (price, time.monotonic())

    def clear(self) -> None:
        self._prices.clear()

    def __len__(self) -> int:
        return len(self._prices)
