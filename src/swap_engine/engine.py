"""Trailing-stop engine: order creation, per-tick evaluation and cancellation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum

from swap_engine.addresses import AddressValidator, RegexAddressValidator
from swap_engine.config import TrailingStopConfig
from swap_engine.db import Database, utc_now
from swap_engine.errors import ConflictError, NotFoundError, ProviderError, TransientError, ValidationError
from swap_engine.execution.base import SwapProvider
from swap_engine.orders import OrderStatus, TrailingStopOrder, compute_trigger_price
from swap_engine.pricing.provider import PriceSource

logger = logging.getLogger(__name__)

PriceInput = Decimal | float | int | str


class EvaluationOutcome(str, Enum):
    """What a single evaluation tick did to an order."""

    SKIPPED = "skipped"  # no usable price this tick
    NOT_PENDING = "not_pending"  # order already left the pending state
    TRACKED = "tracked"  # price recorded, trigger not crossed
    COMPLETED = "completed"  # triggered and the swap was placed
    FAILED = "failed"  # triggered but the swap provider failed


@dataclass
class Evaluation:
    """Result of :meth:`TrailingStopEngine.evaluate`."""

    order_id: int
    outcome: EvaluationOutcome
    order: TrailingStopOrder | None
    detail: str = ""


class KeyedLock:
    """One :class:`threading.Lock` per key, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    @contextmanager
    def hold(self, key: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def discard(self, key: int) -> None:
        """Drop the lock for a key that will never be evaluated again."""
        with self._guard:
            self._locks.pop(key, None)


class TrailingStopEngine:
    """Own the trailing-stop state machine.

    Evaluations of the same order are serialized through a per-order lock and
    always re-read the stored order, so a stale snapshot passed in by the
    scheduler never overwrites newer state. Status changes (trigger, cancel,
    expire) are compare-and-set updates in the store, which is what makes a
    cancel racing a trigger resolve to exactly one winner.
    """

    def __init__(
        self,
        db: Database,
        price_source: PriceSource,
        swap_provider: SwapProvider,
        *,
        config: TrailingStopConfig | None = None,
        address_validator: AddressValidator | None = None,
    ) -> None:
        self._db = db
        self._prices = price_source
        self._swaps = swap_provider
        self._config = config if config is not None else TrailingStopConfig()
        self._addresses: AddressValidator = (
            address_validator if address_validator is not None else RegexAddressValidator()
        )
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def create_order(
        self,
        owner_id: str,
        from_asset: str,
        from_network: str | None,
        from_amount: PriceInput,
        to_asset: str,
        to_network: str | None,
        trailing_percentage: PriceInput,
        settle_address: str,
        *,
        expires_at: datetime | str | None = None,
    ) -> TrailingStopOrder:
        """Validate and persist a new pending trailing-stop order.

        Raises:
            ValidationError: With one entry per offending field.
        """
        errors: dict[str, str] = {}
        from_network = (from_network or self._config.default_network).strip().lower()
        to_network = (to_network or self._config.default_network).strip().lower()

        if not str(owner_id or "").strip():
            errors["owner_id"] = "is required"
        if not (from_asset or "").strip():
            errors["from_asset"] = "is required"
        if not (to_asset or "").strip():
            errors["to_asset"] = "is required"

        amount = _parse_decimal(from_amount, "from_amount", errors)
        if amount is not None and amount <= 0:
            errors["from_amount"] = "must be greater than 0"

        pct = _parse_decimal(trailing_percentage, "trailing_percentage", errors)
        max_pct = Decimal(str(self._config.max_trailing_pct))
        if pct is not None and not 0 < pct <= max_pct:
            errors["trailing_percentage"] = f"must be greater than 0 and at most {max_pct}"

        address = (settle_address or "").strip()
        if not address:
            errors["settle_address"] = "is required"
        elif self._config.validate_addresses and not self._addresses.is_valid(address, to_network):
            errors["settle_address"] = f"is not a valid {to_network} address"

        expiry = self._resolve_expiry(expires_at, errors)

        if errors or amount is None or pct is None:
            raise ValidationError(errors)

        order_id = self._db.create_trailing_stop(
            owner_id=str(owner_id).strip(),
            from_asset=from_asset.strip().upper(),
            from_network=from_network,
            to_asset=to_asset.strip().upper(),
            to_network=to_network,
            from_amount=amount,
            settle_address=address,
            trailing_percentage=pct,
            expires_at=expiry,
        )
        logger.info(
            "Created trailing stop %d for %s: sell %s %s if price drops %s%% from peak",
            order_id,
            owner_id,
            amount,
            from_asset.upper(),
            pct,
        )
        return self._require(order_id)

    def get_order(self, order_id: int, owner_id: str) -> TrailingStopOrder:
        """Return an order owned by ``owner_id``.

        Raises:
            NotFoundError: If the order does not exist or belongs to someone else.
        """
        order = self._db.get_trailing_stop(order_id, owner_id=owner_id)
        if order is None:
            msg = f"Trailing stop order {order_id} not found"
            raise NotFoundError(msg)
        return order

    def list_orders(
        self,
        owner_id: str,
        *,
        status: OrderStatus | None = None,
        limit: int = 100,
    ) -> list[TrailingStopOrder]:
        """Return the owner's orders, most recent first."""
        return self._db.list_trailing_stops(owner_id=owner_id, status=status, limit=limit)

    def cancel_order(self, order_id: int, owner_id: str) -> TrailingStopOrder:
        """Cancel a pending order.

        Raises:
            NotFoundError: If the order does not exist or belongs to someone else.
            ConflictError: If the order is no longer pending.
        """
        cancelled = self._db.transition_status(
            order_id,
            from_status=OrderStatus.PENDING,
            to_status=OrderStatus.CANCELLED,
            owner_id=owner_id,
            detail="cancelled by owner",
        )
        order = self.get_order(order_id, owner_id)
        if not cancelled:
            msg = f"order not cancellable (status={order.status.value})"
            raise ConflictError(msg)
        self._locks.discard(order_id)
        logger.info("Cancelled trailing stop %d for %s", order_id, owner_id)
        return order

    def expire_order(self, order_id: int) -> bool:
        """Move a pending order to ``expired``. Returns False if it already left pending."""
        expired = self._db.transition_status(
            order_id,
            from_status=OrderStatus.PENDING,
            to_status=OrderStatus.EXPIRED,
            detail="expiry reached",
        )
        if expired:
            self._locks.discard(order_id)
            logger.info("Expired trailing stop %d", order_id)
        return expired

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_from_source(self, order: TrailingStopOrder) -> Evaluation:
        """Fetch the current price from the price source and evaluate the order."""
        try:
            price = self._prices.get_current_price(order.from_asset, order.from_network)
        except TransientError as exc:
            logger.warning("Price unavailable for %s (order %d): %s", order.from_asset, order.id, exc)
            return Evaluation(order.id, EvaluationOutcome.SKIPPED, order, detail=str(exc))
        return self.evaluate(order, price)

    def evaluate(self, order: TrailingStopOrder, current_price: PriceInput | None) -> Evaluation:
        """Run one evaluation tick for ``order`` at ``current_price``.

        A missing or non-positive price skips the tick without touching the
        order. Orders that are no longer pending are left alone.
        """
        price = _coerce_price(current_price)
        if price is None:
            logger.warning("No usable price for %s, skipping order %d", order.from_asset, order.id)
            return Evaluation(order.id, EvaluationOutcome.SKIPPED, order, detail="price unavailable")

        with self._locks.hold(order.id):
            current = self._db.get_trailing_stop(order.id)
            if current is None or current.status != OrderStatus.PENDING:
                return Evaluation(order.id, EvaluationOutcome.NOT_PENDING, current)
            return self._track(current, price)

    def _track(self, order: TrailingStopOrder, price: Decimal) -> Evaluation:
        peak = order.peak_price
        if peak is None or price > peak:
            if peak is not None:
                logger.info("New peak for order %d: %s -> %s", order.id, peak, price)
            peak = price
        trigger = compute_trigger_price(peak, order.trailing_percentage)
        checked_at = utc_now()

        if not self._db.update_tracking(
            order.id,
            current_price=price,
            peak_price=peak,
            trigger_price=trigger,
            checked_at=checked_at,
        ):
            current = self._db.get_trailing_stop(order.id)
            if current is not None and current.status == OrderStatus.PENDING:
                logger.warning("Peak for order %d moved past %s while tracking, skipping tick", order.id, peak)
                return Evaluation(order.id, EvaluationOutcome.SKIPPED, current, detail="stored peak is higher")
            return Evaluation(order.id, EvaluationOutcome.NOT_PENDING, current)

        if price <= trigger:
            return self._trigger(order, price, peak, trigger, checked_at)

        order.current_price = price
        order.peak_price = peak
        order.trigger_price = trigger
        order.last_checked_at = checked_at
        return Evaluation(order.id, EvaluationOutcome.TRACKED, order)

    def _trigger(
        self,
        order: TrailingStopOrder,
        price: Decimal,
        peak: Decimal,
        trigger: Decimal,
        triggered_at: str,
    ) -> Evaluation:
        if not self._db.transition_status(
            order.id,
            from_status=OrderStatus.PENDING,
            to_status=OrderStatus.TRIGGERED,
            triggered_at=triggered_at,
            detail=f"price {price} <= trigger {trigger} (peak {peak})",
        ):
            # Lost the race against a cancel or expiry.
            return Evaluation(order.id, EvaluationOutcome.NOT_PENDING, self._db.get_trailing_stop(order.id))

        logger.info(
            "Trailing stop %d triggered: %s %s at %s (peak %s, trigger %s)",
            order.id,
            order.from_amount,
            order.from_asset,
            price,
            peak,
            trigger,
        )
        try:
            result = self._swaps.quote_and_execute(
                order.from_asset,
                order.from_network,
                order.to_asset,
                order.to_network,
                order.from_amount,
                order.settle_address,
            )
        except ProviderError as exc:
            logger.warning("Swap failed for trailing stop %d: %s", order.id, exc)
            return self._fail(order, str(exc))
        except Exception as exc:
            logger.exception("Unexpected swap provider error for trailing stop %d", order.id)
            return self._fail(order, str(exc) or type(exc).__name__)

        self._db.transition_status(
            order.id,
            from_status=OrderStatus.TRIGGERED,
            to_status=OrderStatus.COMPLETED,
            external_order_id=result.external_order_id,
            settle_amount=result.settle_amount,
            detail=f"swap placed as {result.external_order_id}",
        )
        self._locks.discard(order.id)
        logger.info("Trailing stop %d completed as %s", order.id, result.external_order_id)
        return Evaluation(order.id, EvaluationOutcome.COMPLETED, self._require(order.id))

    def _fail(self, order: TrailingStopOrder, message: str) -> Evaluation:
        self._db.transition_status(
            order.id,
            from_status=OrderStatus.TRIGGERED,
            to_status=OrderStatus.FAILED,
            error_message=message,
            detail=message,
        )
        self._locks.discard(order.id)
        return Evaluation(order.id, EvaluationOutcome.FAILED, self._require(order.id), detail=message)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, order_id: int) -> TrailingStopOrder:
        order = self._db.get_trailing_stop(order_id)
        if order is None:
            msg = f"Trailing stop order {order_id} not found"
            raise NotFoundError(msg)
        return order

    def _resolve_expiry(self, expires_at: datetime | str | None, errors: dict[str, str]) -> str | None:
        if expires_at is None:
            hours = self._config.expire_after_hours
            if hours is None:
                return None
            return (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()
        if isinstance(expires_at, str):
            try:
                expires_at = datetime.fromisoformat(expires_at)
            except ValueError:
                errors["expires_at"] = "must be an ISO-8601 timestamp"
                return None
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        expires_at = expires_at.astimezone(timezone.utc)
        if expires_at <= datetime.now(timezone.utc):
            errors["expires_at"] = "must be in the future"
            return None
        return expires_at.isoformat()


def _parse_decimal(value: PriceInput | None, field: str, errors: dict[str, str]) -> Decimal | None:
    """Parse a user-supplied number, recording a field error instead of raising."""
    if value is None or value == "":
        errors[field] = "is required"
        return None
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        errors[field] = "must be a number"
        return None
    if not parsed.is_finite():
        errors[field] = "must be a finite number"
        return None
    return parsed


def _coerce_price(value: PriceInput | None) -> Decimal | None:
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price
