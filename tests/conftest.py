"""Shared fixtures: an on-disk store plus scriptable price and swap doubles."""

from collections.abc import Iterator
from decimal import Decimal
from pathlib import Path

import pytest

from swap_engine.db import Database
from swap_engine.engine import TrailingStopEngine
from swap_engine.errors import ProviderError
from swap_engine.execution.base import SwapProvider, SwapResult

EVM_ADDRESS = "0x" + "ab" * 20


class FakePriceSource:
    """Prices keyed by asset; set ``error`` to make every lookup raise it."""

    def __init__(self, prices: dict[str, Decimal] | None = None) -> None:
        self.prices = dict(prices or {})
        self.error: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    def get_current_price(self, asset: str, network: str) -> Decimal | None:
        self.calls.append((asset, network))
        if self.error is not None:
            raise self.error
        return self.prices.get(asset.upper())


class RecordingSwapProvider(SwapProvider):
    """Records every call; assets in ``failures`` raise ProviderError with the mapped message."""

    def __init__(self) -> None:
        self.calls: list[dict[str, object]] = []
        self.failures: dict[str, str] = {}

    def quote_and_execute(
        self,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: Decimal,
        settle_address: str | None = None,
    ) -> SwapResult:
        self.calls.append(
            {
                "from_asset": from_asset,
                "from_network": from_network,
                "to_asset": to_asset,
                "to_network": to_network,
                "amount": amount,
                "settle_address": settle_address,
            }
        )
        if to_asset in self.failures:
            raise ProviderError(self.failures[to_asset])
        return SwapResult(
            external_order_id=f"ext-{len(self.calls)}",
            settle_amount=str(amount * 2),
            settle_asset=to_asset,
        )


@pytest.fixture()
def db(tmp_path: Path) -> Iterator[Database]:
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture()
def prices() -> FakePriceSource:
    return FakePriceSource({"ETH": Decimal(100)})


@pytest.fixture()
def swaps() -> RecordingSwapProvider:
    return RecordingSwapProvider()


@pytest.fixture()
def engine(db: Database, prices: FakePriceSource, swaps: RecordingSwapProvider) -> TrailingStopEngine:
    return TrailingStopEngine(db, prices, swaps)
