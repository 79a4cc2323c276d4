"""Paper swap provider for simulated swap execution."""

import logging
import uuid
from decimal import Decimal

from swap_engine.errors import ProviderError, TransientError
from swap_engine.execution.base import SwapProvider, SwapResult
from swap_engine.pricing.provider import PriceSource

logger = logging.getLogger(__name__)


class PaperSwapProvider(SwapProvider):
    """Simulated provider that fills swaps at the price source's current rate.

    Assets listed in ``failing_assets`` are rejected with an
    "insufficient liquidity" error, which makes partial batch failures easy
    to rehearse without touching a real exchange.
    """

    def __init__(
        self,
        price_source: PriceSource,
        *,
        fee_pct: float = 0.005,
        failing_assets: list[str] | None = None,
    ) -> None:
        self._prices = price_source
        self._fee = Decimal(str(fee_pct))
        self._failing = {asset.upper() for asset in failing_assets or []}
        self._history: list[SwapResult] = []

    @property
    def history(self) -> list[SwapResult]:
        """Swaps filled so far, oldest first."""
        return list(self._history)

    def quote_and_execute(
        self,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: Decimal,
        settle_address: str | None = None,
    ) -> SwapResult:
        if amount <= 0:
            msg = f"Amount must be positive, got {amount}"
            raise ProviderError(msg)
        if to_asset.upper() in self._failing:
            msg = f"insufficient liquidity for {to_asset.upper()}"
            raise ProviderError(msg)

        from_price = self._price(from_asset, from_network)
        to_price = self._price(to_asset, to_network)
        settle_amount = amount * from_price / to_price * (1 - self._fee)

        result = SwapResult(
            external_order_id=f"paper-{uuid.uuid4().hex[:12]}",
            settle_amount=str(settle_amount.quantize(Decimal("0.00000001"))),
            settle_asset=to_asset.upper(),
            deposit_amount=str(amount),
            deposit_address=None if settle_address is None else f"paper-deposit-{from_asset.lower()}",
        )
        self._history.append(result)
        logger.info(
            "PAPER swap %s %s -> %s %s (%s)",
            amount,
            from_asset,
            result.settle_amount,
            result.settle_asset,
            result.external_order_id,
        )
        return result

    def _price(self, asset: str, network: str) -> Decimal:
        try:
            price = self._prices.get_current_price(asset, network)
        except TransientError as exc:
            raise ProviderError(str(exc)) from exc
        if price is None or price <= 0:
            msg = f"No price available for {asset}"
            raise ProviderError(msg)
        return price
