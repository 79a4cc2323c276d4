"""Portfolio drift analysis.

Compares USD holdings with target allocations and recommends, per asset,
whether to buy, sell or hold. Recommendations are a closed set so callers
can handle every case exhaustively.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from swap_engine.errors import ValidationError

_HUNDRED = Decimal(100)
_TOLERANCE = Decimal("0.01")


class RebalanceAction(str, Enum):
    """What to do with one asset."""

    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


@dataclass(frozen=True)
class Recommendation:
    """A rebalance action with the reasoning behind it."""

    action: RebalanceAction
    explanation: str
    amount_usd: Decimal = Decimal(0)


@dataclass(frozen=True)
class TargetAllocation:
    asset: str
    network: str
    target_percentage: Decimal


@dataclass(frozen=True)
class AssetDrift:
    """Drift of one asset; positive ``drift`` means overweight."""

    asset: str
    network: str
    target_percentage: Decimal
    current_percentage: Decimal
    drift: Decimal
    recommendation: Recommendation


@dataclass(frozen=True)
class DriftReport:
    total_value: Decimal
    drifts: list[AssetDrift]
    threshold: Decimal

    @property
    def needs_rebalance(self) -> bool:
        return any(d.recommendation.action != RebalanceAction.HOLD for d in self.drifts)

    @property
    def total_drift(self) -> Decimal:
        """Sum of absolute drifts across all targets."""
        return sum((abs(d.drift) for d in self.drifts), Decimal(0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_value": str(self.total_value),
            "threshold": str(self.threshold),
            "needs_rebalance": self.needs_rebalance,
            "total_drift": str(self.total_drift),
            "drifts": [
                {
                    "asset": d.asset,
                    "network": d.network,
                    "target_percentage": str(d.target_percentage),
                    "current_percentage": str(d.current_percentage),
                    "drift": str(d.drift),
                    "action": d.recommendation.action.value,
                    "explanation": d.recommendation.explanation,
                    "amount_usd": str(d.recommendation.amount_usd),
                }
                for d in self.drifts
            ],
        }


def analyze_drift(
    holdings: dict[str, Decimal],
    targets: list[TargetAllocation],
    threshold: Decimal = Decimal(5),
) -> DriftReport:
    """Compute per-asset drift of ``holdings`` (USD value by asset) against ``targets``.

    An asset is rebalanced only when its absolute drift exceeds ``threshold``
    percentage points.

    Raises:
        ValidationError: If targets are empty, negative, or do not sum to 100.
    """
    errors: dict[str, str] = {}
    if not targets:
        errors["targets"] = "at least one target allocation is required"
    if any(t.target_percentage < 0 for t in targets):
        errors["targets"] = "target percentages must not be negative"
    target_sum = sum((t.target_percentage for t in targets), Decimal(0))
    if targets and abs(target_sum - _HUNDRED) > _TOLERANCE:
        errors["targets"] = f"target percentages sum to {target_sum}, expected 100"
    if threshold < 0:
        errors["threshold"] = "must not be negative"
    if errors:
        raise ValidationError(errors)

    values = {asset.upper(): value for asset, value in holdings.items()}
    total = sum(values.values(), Decimal(0))

    drifts: list[AssetDrift] = []
    for target in targets:
        value = values.get(target.asset.upper(), Decimal(0))
        current_pct = value / total * _HUNDRED if total > 0 else Decimal(0)
        drift = current_pct - target.target_percentage
        drifts.append(
            AssetDrift(
                asset=target.asset.upper(),
                network=target.network,
                target_percentage=target.target_percentage,
                current_percentage=current_pct,
                drift=drift,
                recommendation=_recommend(target.asset.upper(), drift, total, threshold),
            )
        )
    return DriftReport(total_value=total, drifts=drifts, threshold=threshold)


def _recommend(asset: str, drift: Decimal, total: Decimal, threshold: Decimal) -> Recommendation:
    amount = (abs(drift) / _HUNDRED * total).quantize(Decimal("0.01"))
    if abs(drift) <= threshold:
        return Recommendation(
            RebalanceAction.HOLD,
            f"{asset} is within {threshold}% of target (drift {drift:+.2f}%)",
        )
    if drift > 0:
        return Recommendation(
            RebalanceAction.SELL,
            f"{asset} is overweight by {drift:.2f}%; sell about ${amount}",
            amount,
        )
    return Recommendation(
        RebalanceAction.BUY,
        f"{asset} is underweight by {-drift:.2f}%; buy about ${amount}",
        amount,
    )


@dataclass(frozen=True)
class RebalanceSwap:
    """One USD-denominated swap needed to move the portfolio toward its targets."""

    from_asset: str
    from_network: str
    to_asset: str
    to_network: str
    amount_usd: Decimal


def plan_rebalance(
    report: DriftReport,
    *,
    funding_asset: str = "USDC",
    funding_network: str = "ethereum",
    min_trade_usd: Decimal = Decimal(10),
) -> list[RebalanceSwap]:
    """Turn a drift report into swaps that pair overweight assets with underweight ones.

    Sells are matched against buys in report order. Whatever a buy still
    needs after the sells run out is funded from ``funding_asset``, unless it
    is below ``min_trade_usd``.
    """
    sells = [d for d in report.drifts if d.recommendation.action == RebalanceAction.SELL]
    buys = [d for d in report.drifts if d.recommendation.action == RebalanceAction.BUY]
    unfilled = {d.asset: d.recommendation.amount_usd for d in buys}

    swaps: list[RebalanceSwap] = []
    for sell in sells:
        available = sell.recommendation.amount_usd
        for buy in buys:
            trade = min(available, unfilled[buy.asset])
            if trade <= 0:
                continue
            swaps.append(RebalanceSwap(sell.asset, sell.network, buy.asset, buy.network, trade))
            available -= trade
            unfilled[buy.asset] -= trade

    funding = funding_asset.upper()
    for buy in buys:
        remaining = unfilled[buy.asset]
        if remaining >= min_trade_usd and buy.asset != funding:
            swaps.append(RebalanceSwap(funding, funding_network, buy.asset, buy.network, remaining))
    return swaps
