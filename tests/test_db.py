"""Tests for the SQLite order store."""

from decimal import Decimal
from pathlib import Path

import pytest

from swap_engine.db import Database
from swap_engine.orders import OrderStatus


def _create(db: Database, owner_id: str = "alice", **overrides: object) -> int:
    fields: dict[str, object] = {
        "owner_id": owner_id,
        "from_asset": "ETH",
        "from_network": "ethereum",
        "to_asset": "USDC",
        "to_network": "ethereum",
        "from_amount": Decimal("0.75"),
        "settle_address": "0x" + "ab" * 20,
        "trailing_percentage": Decimal(5),
    }
    fields.update(overrides)
    return db.create_trailing_stop(**fields)  # type: ignore[arg-type]


class TestTrailingStopCRUD:
    def test_create_and_retrieve(self, db: Database) -> None:
        order_id = _create(db)
        assert order_id > 0
        order = db.get_trailing_stop(order_id)
        assert order is not None
        assert order.status == OrderStatus.PENDING
        assert order.from_amount == Decimal("0.75")
        assert order.trailing_percentage == Decimal(5)
        assert order.peak_price is None
        assert order.trigger_price is None
        assert order.created_at

    def test_owner_scoping(self, db: Database) -> None:
        order_id = _create(db, owner_id="alice")
        assert db.get_trailing_stop(order_id, owner_id="alice") is not None
        assert db.get_trailing_stop(order_id, owner_id="bob") is None

    def test_list_filters_by_owner_and_status(self, db: Database) -> None:
        first = _create(db, owner_id="alice")
        _create(db, owner_id="alice")
        _create(db, owner_id="bob")
        db.transition_status(first, from_status=OrderStatus.PENDING, to_status=OrderStatus.CANCELLED)

        assert len(db.list_trailing_stops(owner_id="alice")) == 2
        cancelled = db.list_trailing_stops(owner_id="alice", status=OrderStatus.CANCELLED)
        assert [o.id for o in cancelled] == [first]
        assert len(db.list_trailing_stops()) == 3

    def test_pending_orders_exclude_terminal(self, db: Database) -> None:
        keep = _create(db)
        gone = _create(db)
        db.transition_status(gone, from_status=OrderStatus.PENDING, to_status=OrderStatus.EXPIRED)
        assert [o.id for o in db.get_pending_trailing_stops()] == [keep]

    def test_decimals_survive_round_trip(self, db: Database) -> None:
        order_id = _create(db)
        db.update_tracking(
            order_id,
            current_price=Decimal("3021.123456789"),
            peak_price=Decimal("3100.5"),
            trigger_price=Decimal("2945.475"),
            checked_at="2026-01-01T00:00:00+00:00",
        )
        order = db.get_trailing_stop(order_id)
        assert order is not None
        assert order.current_price == Decimal("3021.123456789")
        assert order.trigger_price == Decimal("2945.475")
        assert order.last_checked_at == "2026-01-01T00:00:00+00:00"


class TestStatusTransitions:
    def test_compare_and_set_applies_once(self, db: Database) -> None:
        order_id = _create(db)
        assert db.transition_status(order_id, from_status=OrderStatus.PENDING, to_status=OrderStatus.CANCELLED)
        assert not db.transition_status(order_id, from_status=OrderStatus.PENDING, to_status=OrderStatus.CANCELLED)
        order = db.get_trailing_stop(order_id)
        assert order is not None
        assert order.status == OrderStatus.CANCELLED
        assert not order.is_active

    def test_owner_mismatch_does_not_transition(self, db: Database) -> None:
        order_id = _create(db, owner_id="alice")
        assert not db.transition_status(
            order_id, from_status=OrderStatus.PENDING, to_status=OrderStatus.CANCELLED, owner_id="bob"
        )
        order = db.get_trailing_stop(order_id)
        assert order is not None
        assert order.status == OrderStatus.PENDING

    def test_illegal_edge_raises(self, db: Database) -> None:
        order_id = _create(db)
        with pytest.raises(ValueError, match="Illegal order transition"):
            db.transition_status(order_id, from_status=OrderStatus.PENDING, to_status=OrderStatus.COMPLETED)

    def test_unknown_field_raises(self, db: Database) -> None:
        order_id = _create(db)
        with pytest.raises(ValueError, match="peak_price"):
            db.transition_status(
                order_id,
                from_status=OrderStatus.PENDING,
                to_status=OrderStatus.TRIGGERED,
                peak_price="1",
            )

    def test_transition_stamps_fields(self, db: Database) -> None:
        order_id = _create(db)
        db.transition_status(
            order_id,
            from_status=OrderStatus.PENDING,
            to_status=OrderStatus.TRIGGERED,
            triggered_at="2026-01-01T00:00:00+00:00",
        )
        db.transition_status(
            order_id,
            from_status=OrderStatus.TRIGGERED,
            to_status=OrderStatus.COMPLETED,
            external_order_id="shift-1",
            settle_amount="150.0",
        )
        order = db.get_trailing_stop(order_id)
        assert order is not None
        assert order.status == OrderStatus.COMPLETED
        assert order.external_order_id == "shift-1"
        assert order.settle_amount == "150.0"
        assert order.triggered_at == "2026-01-01T00:00:00+00:00"

    def test_tracking_write_refused_once_not_pending(self, db: Database) -> None:
        order_id = _create(db)
        db.transition_status(order_id, from_status=OrderStatus.PENDING, to_status=OrderStatus.CANCELLED)
        updated = db.update_tracking(
            order_id,
            current_price=Decimal(1),
            peak_price=Decimal(1),
            trigger_price=Decimal("0.95"),
            checked_at="2026-01-01T00:00:00+00:00",
        )
        assert not updated
        order = db.get_trailing_stop(order_id)
        assert order is not None
        assert order.peak_price is None

    def test_tracking_write_never_lowers_peak(self, db: Database) -> None:
        order_id = _create(db)
        tracking = {"current_price": Decimal(150), "trigger_price": Decimal("142.5"), "checked_at": "t"}
        assert db.update_tracking(order_id, peak_price=Decimal(200), **tracking)  # type: ignore[arg-type]
        assert not db.update_tracking(order_id, peak_price=Decimal(150), **tracking)  # type: ignore[arg-type]
        assert db.update_tracking(order_id, peak_price=Decimal(200), **tracking)  # type: ignore[arg-type]
        order = db.get_trailing_stop(order_id)
        assert order is not None
        assert order.peak_price == Decimal(200)

    def test_events_record_history(self, db: Database) -> None:
        order_id = _create(db)
        db.transition_status(
            order_id, from_status=OrderStatus.PENDING, to_status=OrderStatus.CANCELLED, detail="by owner"
        )
        events = db.get_order_events(order_id)
        assert [(e["from_status"], e["to_status"]) for e in events] == [(None, "pending"), ("pending", "cancelled")]
        assert events[-1]["detail"] == "by owner"


class TestExpiry:
    def test_expirable_orders(self, db: Database) -> None:
        due = _create(db, expires_at="2026-01-01T00:00:00+00:00")
        _create(db, expires_at="2026-12-31T00:00:00+00:00")
        _create(db)
        found = db.get_expirable_trailing_stops("2026-06-01T00:00:00+00:00")
        assert [o.id for o in found] == [due]


def test_context_manager_closes(tmp_path: Path) -> None:
    with Database(tmp_path / "ctx.db") as db:
        _create(db)
    with Database(tmp_path / "ctx.db") as reopened:
        assert len(reopened.list_trailing_stops()) == 1
