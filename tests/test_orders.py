"""Tests for the order model and state machine."""

from decimal import Decimal

import pytest

from swap_engine.orders import (
    TERMINAL_STATUSES,
    OrderStatus,
    TrailingStopOrder,
    can_transition,
    compute_trigger_price,
)


def _make_order(**overrides: object) -> TrailingStopOrder:
    fields: dict[str, object] = {
        "id": 1,
        "owner_id": "alice",
        "from_asset": "ETH",
        "from_network": "ethereum",
        "to_asset": "USDC",
        "to_network": "ethereum",
        "from_amount": Decimal("1.5"),
        "settle_address": "0x" + "ab" * 20,
        "trailing_percentage": Decimal(5),
    }
    fields.update(overrides)
    return TrailingStopOrder(**fields)  # type: ignore[arg-type]


class TestTriggerPrice:
    def test_five_percent_below_peak(self) -> None:
        assert compute_trigger_price(Decimal(100), Decimal(5)) == Decimal(95)

    def test_fractional_percentage(self) -> None:
        assert compute_trigger_price(Decimal(2000), Decimal("2.5")) == Decimal(1950)

    def test_maximum_trail(self) -> None:
        assert compute_trigger_price(Decimal(80), Decimal(50)) == Decimal(40)


class TestStateMachine:
    @pytest.mark.parametrize(
        ("src", "dst"),
        [
            (OrderStatus.PENDING, OrderStatus.TRIGGERED),
            (OrderStatus.PENDING, OrderStatus.CANCELLED),
            (OrderStatus.PENDING, OrderStatus.EXPIRED),
            (OrderStatus.TRIGGERED, OrderStatus.COMPLETED),
            (OrderStatus.TRIGGERED, OrderStatus.FAILED),
        ],
    )
    def test_allowed_edges(self, src: OrderStatus, dst: OrderStatus) -> None:
        assert can_transition(src, dst)

    def test_completed_requires_triggered(self) -> None:
        assert not can_transition(OrderStatus.PENDING, OrderStatus.COMPLETED)
        assert not can_transition(OrderStatus.PENDING, OrderStatus.FAILED)

    def test_triggered_cannot_be_cancelled(self) -> None:
        assert not can_transition(OrderStatus.TRIGGERED, OrderStatus.CANCELLED)

    def test_no_edges_leave_terminal_states(self) -> None:
        for src in TERMINAL_STATUSES:
            for dst in OrderStatus:
                assert not can_transition(src, dst)


class TestTrailingStopOrder:
    def test_active_only_while_pending(self) -> None:
        assert _make_order().is_active
        for status in OrderStatus:
            if status != OrderStatus.PENDING:
                assert not _make_order(status=status).is_active

    def test_to_dict_renders_decimals_as_strings(self) -> None:
        data = _make_order(peak_price=Decimal(100), trigger_price=Decimal(95)).to_dict()
        assert data["from_amount"] == "1.5"
        assert data["peak_price"] == "100"
        assert data["trigger_price"] == "95"
        assert data["current_price"] is None
        assert data["status"] == "pending"
        assert data["is_active"] is True
