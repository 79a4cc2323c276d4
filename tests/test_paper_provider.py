"""Tests for the simulated swap provider."""

from decimal import Decimal

import pytest
from conftest import FakePriceSource

from swap_engine.errors import ProviderError, TransientError
from swap_engine.execution.paper import PaperSwapProvider


@pytest.fixture()
def feed() -> FakePriceSource:
    return FakePriceSource({"ETH": Decimal(3000), "USDC": Decimal(1), "BTC": Decimal(60000)})


class TestPaperSwapProvider:
    def test_fills_at_current_rate_minus_fee(self, feed: FakePriceSource) -> None:
        provider = PaperSwapProvider(feed, fee_pct=0.01)
        result = provider.quote_and_execute("ETH", "ethereum", "USDC", "ethereum", Decimal(2))
        assert result.settle_amount == "5940.00000000"
        assert result.settle_asset == "USDC"
        assert result.external_order_id.startswith("paper-")
        assert result.deposit_address is None
        assert provider.history == [result]

    def test_settle_address_yields_deposit_address(self, feed: FakePriceSource) -> None:
        provider = PaperSwapProvider(feed)
        result = provider.quote_and_execute("ETH", "ethereum", "BTC", "bitcoin", Decimal(1), "bc1qdest")
        assert result.deposit_address == "paper-deposit-eth"

    def test_failing_assets_are_rejected(self, feed: FakePriceSource) -> None:
        provider = PaperSwapProvider(feed, failing_assets=["btc"])
        with pytest.raises(ProviderError, match="insufficient liquidity for BTC"):
            provider.quote_and_execute("USDC", "ethereum", "BTC", "bitcoin", Decimal(100))
        assert provider.history == []

    def test_missing_price_is_provider_error(self, feed: FakePriceSource) -> None:
        provider = PaperSwapProvider(feed)
        with pytest.raises(ProviderError, match="No price available for DOGE"):
            provider.quote_and_execute("USDC", "ethereum", "DOGE", "dogecoin", Decimal(100))

    def test_transient_price_error_is_provider_error(self, feed: FakePriceSource) -> None:
        feed.error = TransientError("feed down")
        with pytest.raises(ProviderError, match="feed down"):
            PaperSwapProvider(feed).quote_and_execute("ETH", "ethereum", "USDC", "ethereum", Decimal(1))

    def test_rejects_non_positive_amount(self, feed: FakePriceSource) -> None:
        with pytest.raises(ProviderError, match="must be positive"):
            PaperSwapProvider(feed).quote_and_execute("ETH", "ethereum", "USDC", "ethereum", Decimal(0))
