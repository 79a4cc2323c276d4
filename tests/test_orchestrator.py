"""Tests for the orchestrator's tick loop."""

import json
from collections.abc import Iterator
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import EVM_ADDRESS, FakePriceSource, RecordingSwapProvider

from swap_engine.config import AppConfig, PaperConfig
from swap_engine.execution.paper import PaperSwapProvider
from swap_engine.monitoring.alerts import AlertKind, AlertManager
from swap_engine.orchestrator import Orchestrator
from swap_engine.orders import OrderStatus
from swap_engine.pricing.coingecko import CoinGeckoPriceSource


@pytest.fixture()
def feed() -> FakePriceSource:
    return FakePriceSource({"ETH": Decimal(100)})


@pytest.fixture()
def sink() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def orch(
    tmp_path: Path, feed: FakePriceSource, swaps: RecordingSwapProvider, sink: MagicMock
) -> Iterator[Orchestrator]:
    orchestrator = Orchestrator(
        AppConfig(),
        tmp_path / "orch.db",
        price_source=feed,
        swap_provider=swaps,
        alerts=AlertManager([sink]),
    )
    yield orchestrator
    orchestrator.close()


def _create(orch: Orchestrator, **overrides: object) -> int:
    fields: dict[str, object] = {
        "owner_id": "alice",
        "from_asset": "ETH",
        "from_network": "ethereum",
        "from_amount": "1",
        "to_asset": "USDC",
        "to_network": "ethereum",
        "trailing_percentage": "5",
        "settle_address": EVM_ADDRESS,
    }
    fields.update(overrides)
    return orch.engine.create_order(**fields).id  # type: ignore[arg-type]


class TestTick:
    def test_empty_tick(self, orch: Orchestrator) -> None:
        result = orch.tick()
        assert result["checked"] == 0
        assert result["expired"] == 0
        assert result["completed"] == 0

    def test_tracks_then_completes(
        self, orch: Orchestrator, feed: FakePriceSource, swaps: RecordingSwapProvider, sink: MagicMock
    ) -> None:
        order_id = _create(orch)
        first = orch.tick()
        assert first["checked"] == 1
        assert first["tracked"] == 1

        feed.prices["ETH"] = Decimal(94)
        second = orch.tick()
        assert second["completed"] == 1
        assert len(swaps.calls) == 1
        assert orch.engine.get_order(order_id, "alice").status == OrderStatus.COMPLETED
        sink.send.assert_called_once()
        alert = sink.send.call_args[0][0]
        assert alert.kind == AlertKind.ORDER_EXECUTED
        assert alert.order_id == order_id
        assert "executed" in alert.message

        assert orch.tick()["checked"] == 0

    def test_failure_is_alerted(
        self, orch: Orchestrator, feed: FakePriceSource, swaps: RecordingSwapProvider, sink: MagicMock
    ) -> None:
        swaps.failures["USDC"] = "insufficient liquidity"
        _create(orch)
        orch.tick()
        feed.prices["ETH"] = Decimal(50)
        assert orch.tick()["failed"] == 1
        assert "insufficient liquidity" in sink.send.call_args[0][0].message

    def test_missing_price_skips(self, orch: Orchestrator, feed: FakePriceSource) -> None:
        _create(orch)
        feed.prices.clear()
        result = orch.tick()
        assert result["checked"] == 1
        assert result["skipped"] == 1

    def test_one_bad_order_does_not_stop_the_pass(
        self, orch: Orchestrator, feed: FakePriceSource, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _create(orch)
        _create(orch)
        real = orch.engine.evaluate_from_source
        calls: list[int] = []

        def flaky(order):  # type: ignore[no-untyped-def]
            calls.append(order.id)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return real(order)

        monkeypatch.setattr(orch.engine, "evaluate_from_source", flaky)
        result = orch.tick()
        assert calls == [1, 2]
        assert result["checked"] == 1

    def test_expires_overdue_orders(self, orch: Orchestrator, sink: MagicMock) -> None:
        order_id = orch.db.create_trailing_stop(
            owner_id="alice",
            from_asset="ETH",
            from_network="ethereum",
            to_asset="USDC",
            to_network="ethereum",
            from_amount=Decimal(1),
            settle_address=EVM_ADDRESS,
            trailing_percentage=Decimal(5),
            expires_at="2000-01-01T00:00:00+00:00",
        )
        result = orch.tick()
        assert result["expired"] == 1
        assert result["checked"] == 0
        assert orch.engine.get_order(order_id, "alice").status == OrderStatus.EXPIRED
        alert = sink.send.call_args[0][0]
        assert alert.kind == AlertKind.ORDER_EXPIRED
        assert alert.order_id == order_id


class _Response:
    def __init__(self, payload: object) -> None:
        self._body = json.dumps(payload).encode()

    def __enter__(self) -> "_Response":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def read(self) -> bytes:
        return self._body


class TestPricePrefetch:
    @pytest.fixture()
    def live_orch(self, tmp_path: Path, swaps: RecordingSwapProvider) -> Iterator[Orchestrator]:
        orchestrator = Orchestrator(
            AppConfig(), tmp_path / "prefetch.db", price_source=CoinGeckoPriceSource(), swap_provider=swaps
        )
        yield orchestrator
        orchestrator.close()

    def _seed(self, orch: Orchestrator, asset: str) -> None:
        orch.db.create_trailing_stop(
            owner_id="alice",
            from_asset=asset,
            from_network="ethereum",
            to_asset="USDC",
            to_network="ethereum",
            from_amount=Decimal(1),
            settle_address=EVM_ADDRESS,
            trailing_percentage=Decimal(5),
        )

    def test_one_request_per_network(self, live_orch: Orchestrator) -> None:
        for asset in ("ETH", "ETH", "BTC"):
            self._seed(live_orch, asset)
        payload = {"ethereum": {"usd": 3000}, "bitcoin": {"usd": 65000}}
        with patch("urllib.request.urlopen", return_value=_Response(payload)) as mock_open:
            result = live_orch.tick()
        assert mock_open.call_count == 1
        assert "ids=bitcoin%2Cethereum" in mock_open.call_args[0][0].full_url
        assert result["tracked"] == 3

    def test_failed_prefetch_falls_back_to_per_order_lookups(self, live_orch: Orchestrator) -> None:
        self._seed(live_orch, "ETH")
        self._seed(live_orch, "BTC")
        with patch("urllib.request.urlopen", side_effect=OSError("offline")) as mock_open:
            result = live_orch.tick()
        assert mock_open.call_count == 3
        assert result["checked"] == 2
        assert result["skipped"] == 2

    def test_feeds_without_batch_lookup_are_not_prefetched(self, orch: Orchestrator, feed: FakePriceSource) -> None:
        _create(orch)
        orch.tick()
        assert feed.calls == [("ETH", "ethereum")]


class TestWiring:
    def test_paper_mode_builds_paper_provider(self, tmp_path: Path) -> None:
        orch = Orchestrator(AppConfig(paper=PaperConfig(failing_assets=["BTC"])), tmp_path / "w.db")
        try:
            assert isinstance(orch._swaps, PaperSwapProvider)  # noqa: SLF001
            assert isinstance(orch._prices, CoinGeckoPriceSource)  # noqa: SLF001
            assert orch.poll_interval == 60
        finally:
            orch.close()

    def test_live_mode_requires_secret(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SIDESHIFT_SECRET", raising=False)
        with pytest.raises(ValueError, match="SIDESHIFT_SECRET"):
            Orchestrator(AppConfig(mode="live"), tmp_path / "live.db")

    def test_webhooks_register_sinks(self) -> None:
        webhooks = ["https://a.example", "https://b.example"]
        config = AppConfig.model_validate({"monitoring": {"alert_webhooks": webhooks}})
        assert Orchestrator._build_alert_manager(config).sink_count == 3  # noqa: SLF001
