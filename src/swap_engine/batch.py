"""Batch swap orchestrator: split one swap intent into legs and execute them.

Partial failure is data, not an exception: :meth:`BatchOrchestrator.execute_batch`
never raises for a provider failure, it marks the leg as ``error`` and moves on.
Only malformed intents raise (:class:`~swap_engine.errors.ValidationError`).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from swap_engine.config import BatchConfig
from swap_engine.errors import ProviderError, TransientError, ValidationError
from swap_engine.execution.base import SwapProvider, SwapResult
from swap_engine.monitoring.alerts import AlertKind, AlertManager
from swap_engine.pricing.provider import PriceSource
from swap_engine.rebalance import DriftReport, RebalanceSwap, plan_rebalance

logger = logging.getLogger(__name__)

_HUNDRED = Decimal(100)
_UNITS = Decimal("0.00000001")


class LegStatus(str, Enum):
    """Per-leg execution status."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class BatchState(str, Enum):
    """Overall state of a batch, derived from its legs."""

    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class LegSpec:
    """Target of one leg: which asset to buy and what share of the parent amount."""

    to_asset: str
    percentage: Decimal | float | int | str
    to_chain: str | None = None


@dataclass
class PortfolioLeg:
    """One independent swap inside a batch."""

    id: str
    from_asset: str
    from_chain: str
    to_asset: str
    to_chain: str
    amount: Decimal
    percentage: Decimal
    status: LegStatus = LegStatus.PENDING
    quote: SwapResult | None = None
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PortfolioLeg:
        """Rebuild a leg a caller held on to between execute and retry."""
        quote = data.get("quote")
        return cls(
            id=str(data["id"]),
            from_asset=str(data["from_asset"]),
            from_chain=str(data["from_chain"]),
            to_asset=str(data["to_asset"]),
            to_chain=str(data["to_chain"]),
            amount=Decimal(str(data["amount"])),
            percentage=Decimal(str(data.get("percentage", 0))),
            status=LegStatus(data.get("status", LegStatus.PENDING.value)),
            quote=SwapResult.from_dict(quote) if isinstance(quote, dict) else None,
            error_message=data.get("error_message"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from_asset": self.from_asset,
            "from_chain": self.from_chain,
            "to_asset": self.to_asset,
            "to_chain": self.to_chain,
            "amount": str(self.amount),
            "percentage": str(self.percentage),
            "status": self.status.value,
            "quote": self.quote.to_dict() if self.quote is not None else None,
            "error_message": self.error_message,
        }


@dataclass
class BatchSummary:
    """Counts of legs by status."""

    total: int
    succeeded: int
    failed: int
    pending: int

    @property
    def state(self) -> BatchState:
        if self.pending or self.total == 0:
            return BatchState.PENDING
        if self.failed == 0:
            return BatchState.COMPLETED
        if self.succeeded == 0:
            return BatchState.FAILED
        return BatchState.PARTIAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "pending": self.pending,
            "state": self.state.value,
        }


def summarize(legs: Iterable[PortfolioLeg]) -> BatchSummary:
    """Tally legs by status."""
    legs = list(legs)
    return BatchSummary(
        total=len(legs),
        succeeded=sum(1 for leg in legs if leg.status == LegStatus.SUCCESS),
        failed=sum(1 for leg in legs if leg.status == LegStatus.ERROR),
        pending=sum(1 for leg in legs if leg.status == LegStatus.PENDING),
    )


class BatchOrchestrator:
    """Split portfolio intents into legs and run them one at a time."""

    def __init__(
        self,
        swap_provider: SwapProvider,
        *,
        config: BatchConfig | None = None,
        price_source: PriceSource | None = None,
        alerts: AlertManager | None = None,
    ) -> None:
        self._swaps = swap_provider
        self._config = config if config is not None else BatchConfig()
        self._prices = price_source
        self._alerts = alerts

    def split_intent(
        self,
        parent_amount: Decimal | float | int | str,
        from_asset: str,
        from_chain: str | None,
        leg_specs: Sequence[LegSpec],
    ) -> list[PortfolioLeg]:
        """Build one pending leg per :class:`LegSpec` with ``amount = parent * pct / 100``.

        Raises:
            ValidationError: If the amount, any leg, or the percentage total is invalid.
        """
        errors: dict[str, str] = {}
        amount = _to_decimal(parent_amount)
        if amount is None or amount <= 0:
            errors["parent_amount"] = "must be a number greater than 0"
        if not (from_asset or "").strip():
            errors["from_asset"] = "is required"
        if not leg_specs:
            errors["legs"] = "at least one leg is required"
        elif len(leg_specs) > self._config.max_legs:
            errors["legs"] = f"at most {self._config.max_legs} legs are allowed"

        percentages: list[Decimal] = []
        for index, spec in enumerate(leg_specs):
            pct = _to_decimal(spec.percentage)
            if pct is None or pct <= 0:
                errors[f"legs[{index}].percentage"] = "must be a number greater than 0"
            else:
                percentages.append(pct)
            if not (spec.to_asset or "").strip():
                errors[f"legs[{index}].to_asset"] = "is required"

        total = sum(percentages, Decimal(0))
        if total > _HUNDRED:
            errors["legs"] = f"percentages sum to {total}, which exceeds 100"
        elif self._config.require_full_allocation and percentages and total != _HUNDRED:
            errors["legs"] = f"percentages sum to {total}, expected exactly 100"

        if errors or amount is None:
            raise ValidationError(errors)

        chain = (from_chain or self._config.default_chain).strip().lower()
        source = from_asset.strip().upper()
        legs: list[PortfolioLeg] = []
        for index, (spec, pct) in enumerate(zip(leg_specs, percentages, strict=True)):
            target = spec.to_asset.strip().upper()
            legs.append(
                PortfolioLeg(
                    id=f"{target}-{index}",
                    from_asset=source,
                    from_chain=chain,
                    to_asset=target,
                    to_chain=(spec.to_chain or chain).strip().lower(),
                    amount=amount * pct / _HUNDRED,
                    percentage=pct,
                )
            )
        logger.info("Split %s %s into %d legs (%s%% allocated)", amount, source, len(legs), total)
        return legs

    def execute_batch(self, legs: list[PortfolioLeg], *, settle_address: str | None = None) -> list[PortfolioLeg]:
        """Execute every pending leg sequentially, in input order.

        Legs that are not pending (already succeeded, or failed and not reset)
        are skipped. Returns the same list with final statuses.
        """
        return self._execute_legs(legs, {leg.id for leg in legs if leg.status == LegStatus.PENDING}, settle_address)

    def retry_failed(
        self,
        all_legs: list[PortfolioLeg],
        failed_subset: Iterable[PortfolioLeg | str],
        *,
        settle_address: str | None = None,
    ) -> list[PortfolioLeg]:
        """Re-run only the named legs that are currently in ``error``.

        ``failed_subset`` may hold legs or leg ids. Only legs that were reset
        here reach the provider: legs outside the subset are never sent, even
        when their status says ``pending``, and legs in it that already
        succeeded keep their status and quote.
        """
        requested = {item if isinstance(item, str) else item.id for item in failed_subset}
        reset: set[str] = set()
        for leg in all_legs:
            if leg.id in requested and leg.status == LegStatus.ERROR:
                leg.status = LegStatus.PENDING
                leg.error_message = None
                leg.quote = None
                reset.add(leg.id)
        logger.info("Retrying %d failed leg(s)", len(reset))
        return self._execute_legs(all_legs, reset, settle_address)

    def rebalance_legs(self, report: DriftReport) -> list[PortfolioLeg]:
        """Turn a drift report into pending legs, one per rebalancing swap.

        USD amounts are converted into units of each leg's source asset at the
        current price. A report that needs no rebalancing yields no legs.

        Raises:
            TransientError: If a source asset has no usable price.
        """
        if not report.needs_rebalance:
            return []
        prices = self._prices
        if prices is None:
            msg = "Rebalancing requires a price source"
            raise ValueError(msg)

        swaps = plan_rebalance(
            report,
            funding_asset=self._config.funding_asset,
            funding_network=self._config.default_chain,
            min_trade_usd=Decimal(str(self._config.min_rebalance_trade_usd)),
        )
        total_usd = sum((swap.amount_usd for swap in swaps), Decimal(0))
        legs = [_leg_for_swap(prices, index, swap, total_usd) for index, swap in enumerate(swaps)]
        logger.info("Planned %d rebalance legs worth $%s", len(legs), total_usd)
        return legs

    def execute_rebalance(self, report: DriftReport, *, settle_address: str | None = None) -> list[PortfolioLeg]:
        """Plan and execute the legs for ``report``; failed legs can be retried like any batch."""
        return self.execute_batch(self.rebalance_legs(report), settle_address=settle_address)

    def _execute_legs(
        self, legs: list[PortfolioLeg], only_ids: set[str], settle_address: str | None
    ) -> list[PortfolioLeg]:
        for leg in legs:
            if leg.id in only_ids and leg.status == LegStatus.PENDING:
                self._execute_leg(leg, settle_address)
        summary = summarize(legs)
        logger.info(
            "Batch finished: %d succeeded, %d failed of %d legs", summary.succeeded, summary.failed, summary.total
        )
        return legs

    def _execute_leg(self, leg: PortfolioLeg, settle_address: str | None) -> None:
        try:
            quote = self._swaps.quote_and_execute(
                leg.from_asset,
                leg.from_chain,
                leg.to_asset,
                leg.to_chain,
                leg.amount,
                settle_address,
            )
        except ProviderError as exc:
            leg.status = LegStatus.ERROR
            leg.error_message = str(exc)
            logger.warning("Leg %s failed: %s", leg.id, exc)
            self._alert_failure(leg)
            return
        except Exception as exc:
            leg.status = LegStatus.ERROR
            leg.error_message = str(exc) or type(exc).__name__
            logger.exception("Leg %s failed unexpectedly", leg.id)
            self._alert_failure(leg)
            return
        leg.status = LegStatus.SUCCESS
        leg.quote = quote
        leg.error_message = None
        logger.info("Leg %s succeeded: %s %s -> %s", leg.id, leg.amount, leg.from_asset, leg.to_asset)

    def _alert_failure(self, leg: PortfolioLeg) -> None:
        if self._alerts is not None:
            self._alerts.alert(
                f"Leg {leg.id} failed: {leg.amount} {leg.from_asset} -> {leg.to_asset}: {leg.error_message}",
                kind=AlertKind.LEG_FAILED,
                leg_id=leg.id,
            )


def _leg_for_swap(prices: PriceSource, index: int, swap: RebalanceSwap, total_usd: Decimal) -> PortfolioLeg:
    """Price a USD swap in units of its source asset."""
    price = prices.get_current_price(swap.from_asset, swap.from_network)
    if price is None or price <= 0:
        msg = f"No price available for {swap.from_asset}"
        raise TransientError(msg)
    return PortfolioLeg(
        id=f"{swap.to_asset}-{index}",
        from_asset=swap.from_asset,
        from_chain=swap.from_network,
        to_asset=swap.to_asset,
        to_chain=swap.to_network,
        amount=(swap.amount_usd / price).quantize(_UNITS),
        percentage=(swap.amount_usd / total_usd * _HUNDRED).quantize(Decimal("0.01")),
    )


def _to_decimal(value: Decimal | float | int | str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None
