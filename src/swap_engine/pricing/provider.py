"""PriceSource protocol for the price feed abstraction.

The live CoinGecko client and any test double satisfy this protocol via
structural typing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable


class PriceSource(Protocol):
    """Structural protocol for USD price feeds.

    ``get_current_price`` returns ``None`` when the pair is unknown or has
    no price this tick, and may raise
    :class:`~swap_engine.errors.TransientError` when the feed is unreachable.
    """

    def get_current_price(self, asset: str, network: str) -> Decimal | None: ...


@runtime_checkable
class BatchPriceSource(PriceSource, Protocol):
    """A price feed that can also quote several assets in one request.

    Prices fetched through ``get_prices`` must be served by later
    ``get_current_price`` calls for the same ``(asset, network)``.
    """

    def get_prices(self, assets: list[str], network: str = "") -> dict[str, Decimal]: ...
