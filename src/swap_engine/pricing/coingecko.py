"""CoinGecko price source.

Fetches USD spot prices from the public ``/simple/price`` endpoint and keeps
them in a :class:`PriceCache` for ``cache_ttl`` seconds.
"""

import json
import logging
import urllib.parse
import urllib.request
from decimal import Decimal, InvalidOperation
from typing import Any

from swap_engine.errors import TransientError
from swap_engine.pricing.cache import PriceCache

logger = logging.getLogger(__name__)

COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "MATIC": "polygon",
    "SOL": "solana",
    "AVAX": "avalanche-2",
    "ARB": "arbitrum",
    "OP": "optimism",
    "BNB": "binancecoin",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "AAVE": "aave",
    "MKR": "maker",
    "SHIB": "shiba-inu",
    "PEPE": "pepe",
    "WIF": "dogwifhat",
    "BONK": "bonk",
    "JUP": "jupiter-exchange-solana",
    "APT": "aptos",
    "SUI": "sui",
    "TIA": "celestia",
    "XRP": "ripple",
    "LTC": "litecoin",
    "XMR": "monero",
    "TON": "the-open-network",
}


class CoinGeckoPriceSource:
    """USD prices from CoinGecko.

    The network is part of the cache key but not of the lookup: CoinGecko
    quotes one price per asset regardless of the chain it is bridged to.
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        cache_ttl: float = 60.0,
        timeout: int = 10,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._cache = PriceCache(ttl=cache_ttl)
        self._timeout = timeout

    def get_current_price(self, asset: str, network: str) -> Decimal | None:
        """Return the USD price of ``asset``, or None if it is not mapped or not quoted.

        Raises:
            TransientError: If CoinGecko cannot be reached.
        """
        cached = self._cache.get(asset, network)
        if cached is not None:
            return cached

        coin_id = COINGECKO_IDS.get(asset.upper())
        if coin_id is None:
            logger.warning("No CoinGecko mapping for asset %s", asset)
            return None

        payload = self._fetch({"ids": coin_id, "vs_currencies": "usd"})
        price = _parse_usd(payload.get(coin_id))
        if price is None:
            logger.warning("CoinGecko returned no USD price for %s", asset)
            return None
        self._cache.put(asset, network, price)
        return price

    def get_prices(self, assets: list[str], network: str = "") -> dict[str, Decimal]:
        """Fetch several prices in one request. Unknown assets are omitted."""
        result: dict[str, Decimal] = {}
        to_fetch: dict[str, str] = {}
        for asset in assets:
            cached = self._cache.get(asset, network)
            if cached is not None:
                result[asset.upper()] = cached
                continue
            coin_id = COINGECKO_IDS.get(asset.upper())
            if coin_id is not None:
                to_fetch[coin_id] = asset.upper()

        if to_fetch:
            payload = self._fetch({"ids": ",".join(sorted(to_fetch)), "vs_currencies": "usd"})
            for coin_id, asset in to_fetch.items():
                price = _parse_usd(payload.get(coin_id))
                if price is not None:
                    self._cache.put(asset, network, price)
                    result[asset] = price
        return result

    def _fetch(self, params: dict[str, str]) -> dict[str, Any]:
        url = f"{self._base_url}/simple/price?{urllib.parse.urlencode(params)}"
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                data = json.loads(resp.read().decode())
        except (OSError, ValueError) as exc:
            msg = f"CoinGecko request failed: {exc}"
            raise TransientError(msg) from exc
        return data if isinstance(data, dict) else {}


def _parse_usd(entry: object) -> Decimal | None:
    if not isinstance(entry, dict) or entry.get("usd") is None:
        return None
    try:
        return Decimal(str(entry["usd"]))
    except InvalidOperation:
        return None
