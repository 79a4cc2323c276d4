"""Orchestrator: wires config, store, price feed, swap provider and engines together."""

import logging
from collections import defaultdict
from pathlib import Path

from swap_engine.batch import BatchOrchestrator
from swap_engine.config import AppConfig
from swap_engine.db import Database, utc_now
from swap_engine.engine import Evaluation, EvaluationOutcome, TrailingStopEngine
from swap_engine.errors import TransientError
from swap_engine.execution.base import SwapProvider
from swap_engine.execution.paper import PaperSwapProvider
from swap_engine.monitoring.alerts import AlertKind, AlertManager, LogAlertSink, WebhookAlertSink
from swap_engine.orders import TrailingStopOrder
from swap_engine.pricing.coingecko import CoinGeckoPriceSource
from swap_engine.pricing.provider import BatchPriceSource, PriceSource

logger = logging.getLogger(__name__)


class Orchestrator:
    """Own the long-lived collaborators and drive the evaluation loop.

    Each call to :meth:`tick` expires overdue orders and then evaluates every
    pending trailing stop once, sequentially, so a single scheduler process is
    the only writer for tracking state.
    """

    def __init__(
        self,
        config: AppConfig,
        db_path: Path,
        *,
        price_source: PriceSource | None = None,
        swap_provider: SwapProvider | None = None,
        alerts: AlertManager | None = None,
    ) -> None:
        self._config = config
        self._db = Database(db_path)
        self._prices: PriceSource = price_source if price_source is not None else self._build_price_source(config)
        self._swaps: SwapProvider = (
            swap_provider if swap_provider is not None else self._build_swap_provider(config, self._prices)
        )
        self._alerts = alerts if alerts is not None else self._build_alert_manager(config)
        self._engine = TrailingStopEngine(self._db, self._prices, self._swaps, config=config.trailing_stop)
        self._batches = BatchOrchestrator(
            self._swaps, config=config.batch, price_source=self._prices, alerts=self._alerts
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def tick(self) -> dict[str, int]:
        """Run one expiry pass and one evaluation pass over pending orders.

        Returns a summary dict with ``expired``, ``checked`` and one count
        per :class:`EvaluationOutcome` value.
        """
        summary = {"expired": self._expire_due_orders(), "checked": 0}
        summary.update({outcome.value: 0 for outcome in EvaluationOutcome})

        orders = self._db.get_pending_trailing_stops()
        if orders:
            logger.info("Checking %d trailing stop orders", len(orders))
            self._prefetch_prices(orders)
        for order in orders:
            try:
                evaluation = self._engine.evaluate_from_source(order)
            except Exception:
                logger.exception("Error evaluating trailing stop %d", order.id)
                continue
            summary["checked"] += 1
            summary[evaluation.outcome.value] += 1
            self._notify(evaluation)
        return summary

    @property
    def engine(self) -> TrailingStopEngine:
        return self._engine

    @property
    def batches(self) -> BatchOrchestrator:
        return self._batches

    @property
    def db(self) -> Database:
        return self._db

    @property
    def poll_interval(self) -> int:
        return self._config.poll_interval

    def close(self) -> None:
        """Release resources (database connection)."""
        self._db.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _expire_due_orders(self) -> int:
        expired = 0
        for order in self._db.get_expirable_trailing_stops(utc_now()):
            if self._engine.expire_order(order.id):
                expired += 1
                self._alerts.alert(
                    f"Trailing stop {order.id} expired: {order.from_amount} {order.from_asset} -> {order.to_asset}",
                    kind=AlertKind.ORDER_EXPIRED,
                    order_id=order.id,
                )
        return expired

    def _prefetch_prices(self, orders: list[TrailingStopOrder]) -> None:
        """Warm the price cache with one request per network instead of one per order."""
        if not isinstance(self._prices, BatchPriceSource):
            return
        by_network: dict[str, set[str]] = defaultdict(set)
        for order in orders:
            by_network[order.from_network].add(order.from_asset)
        for network, assets in by_network.items():
            try:
                self._prices.get_prices(sorted(assets), network)
            except TransientError as exc:
                logger.warning("Price prefetch failed for %s: %s", network, exc)

    def _notify(self, evaluation: Evaluation) -> None:
        order = evaluation.order
        if order is None:
            return
        if evaluation.outcome == EvaluationOutcome.COMPLETED:
            self._alerts.alert(
                f"Trailing stop {order.id} executed: {order.from_amount} {order.from_asset} -> {order.to_asset} "
                f"at {order.current_price} (peak {order.peak_price}), order {order.external_order_id}",
                kind=AlertKind.ORDER_EXECUTED,
                order_id=order.id,
            )
        elif evaluation.outcome == EvaluationOutcome.FAILED:
            self._alerts.alert(
                f"Trailing stop {order.id} failed: {evaluation.detail}", kind=AlertKind.ORDER_FAILED, order_id=order.id
            )

    @staticmethod
    def _build_price_source(config: AppConfig) -> PriceSource:
        feed = config.price_feed
        return CoinGeckoPriceSource(base_url=feed.base_url, cache_ttl=feed.cache_ttl, timeout=feed.timeout)

    @staticmethod
    def _build_swap_provider(config: AppConfig, prices: PriceSource) -> SwapProvider:
        """Instantiate the right swap provider for the configured mode."""
        if config.mode == "live":
            from swap_engine.execution.sideshift import SideShiftProvider  # noqa: PLC0415

            return SideShiftProvider.from_env(config.swap_provider)
        return PaperSwapProvider(prices, fee_pct=config.paper.fee_pct, failing_assets=config.paper.failing_assets)

    @staticmethod
    def _build_alert_manager(config: AppConfig) -> AlertManager:
        manager = AlertManager([LogAlertSink()])
        for url in config.monitoring.alert_webhooks:
            manager.register(WebhookAlertSink(url))
        return manager
