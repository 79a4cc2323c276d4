"""SQLite order store for trailing-stop orders and their status history."""

import sqlite3
import threading
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from swap_engine.orders import OrderStatus, TrailingStopOrder, can_transition

_ORDER_COLUMNS = (
    "owner_id",
    "from_asset",
    "from_network",
    "to_asset",
    "to_network",
    "from_amount",
    "settle_address",
    "trailing_percentage",
    "created_at",
    "expires_at",
)

# Fields a status transition is allowed to stamp alongside the new status.
_TRANSITION_FIELDS = frozenset({"triggered_at", "external_order_id", "settle_amount", "error_message"})


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string (the store's timestamp format)."""
    return datetime.now(timezone.utc).isoformat()


class Database:
    """SQLite store for trailing-stop orders.

    Every status change goes through :meth:`transition_status`, a single
    ``UPDATE ... WHERE status = ?`` statement, so concurrent cancels and
    triggers are linearized by the database rather than by read-then-write.
    """

    def __init__(self, path: Path) -> None:
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS trailing_stop_orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                from_asset TEXT NOT NULL,
                from_network TEXT NOT NULL,
                to_asset TEXT NOT NULL,
                to_network TEXT NOT NULL,
                from_amount TEXT NOT NULL,
                settle_address TEXT NOT NULL,
                trailing_percentage TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                is_active INTEGER NOT NULL DEFAULT 1,
                peak_price TEXT,
                current_price TEXT,
                trigger_price TEXT,
                external_order_id TEXT,
                settle_amount TEXT,
                error_message TEXT,
                created_at TEXT NOT NULL,
                last_checked_at TEXT,
                triggered_at TEXT,
                expires_at TEXT
            )
        """)
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_trailing_stop_owner ON trailing_stop_orders (owner_id, status)"
        )
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS order_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                order_id INTEGER NOT NULL,
                from_status TEXT,
                to_status TEXT NOT NULL,
                detail TEXT NOT NULL DEFAULT ''
            )
        """)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Trailing-stop orders
    # ------------------------------------------------------------------

    def create_trailing_stop(
        self,
        *,
        owner_id: str,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        from_amount: Decimal,
        settle_address: str,
        trailing_percentage: Decimal,
        expires_at: str | None = None,
    ) -> int:
        """Insert a new pending order and return its ID."""
        values = (
            owner_id,
            from_asset,
            from_network,
            to_asset,
            to_network,
            str(from_amount),
            settle_address,
            str(trailing_percentage),
            utc_now(),
            expires_at,
        )
        placeholders = ", ".join("?" for _ in _ORDER_COLUMNS)
        with self._lock:
            cursor = self._conn.execute(
                f"INSERT INTO trailing_stop_orders ({', '.join(_ORDER_COLUMNS)}) VALUES ({placeholders})",  # noqa: S608
                values,
            )
            order_id = cursor.lastrowid or 0
            self._record_event(order_id, None, OrderStatus.PENDING, "created")
            self._conn.commit()
        return order_id

    def get_trailing_stop(self, order_id: int, *, owner_id: str | None = None) -> TrailingStopOrder | None:
        """Fetch one order; when ``owner_id`` is given, orders of other owners are invisible."""
        query = "SELECT * FROM trailing_stop_orders WHERE id = ?"
        params: list[object] = [order_id]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        with self._lock:
            row = self._conn.execute(query, params).fetchone()
        return self._row_to_order(row) if row else None

    def list_trailing_stops(
        self,
        *,
        owner_id: str | None = None,
        status: OrderStatus | None = None,
        limit: int = 100,
    ) -> list[TrailingStopOrder]:
        """Retrieve orders, most recent first, optionally filtered by owner and status."""
        query = "SELECT * FROM trailing_stop_orders"
        conditions: list[str] = []
        params: list[object] = []
        if owner_id is not None:
            conditions.append("owner_id = ?")
            params.append(owner_id)
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_order(row) for row in rows]

    def get_pending_trailing_stops(self) -> list[TrailingStopOrder]:
        """Return every pending order, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM trailing_stop_orders WHERE status = 'pending' ORDER BY id"
            ).fetchall()
        return [self._row_to_order(row) for row in rows]

    def get_expirable_trailing_stops(self, now: str) -> list[TrailingStopOrder]:
        """Return pending orders whose ``expires_at`` is at or before ``now``."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM trailing_stop_orders"
                " WHERE status = 'pending' AND expires_at IS NOT NULL AND expires_at <= ? ORDER BY id",
                (now,),
            ).fetchall()
        return [self._row_to_order(row) for row in rows]

    def update_tracking(
        self,
        order_id: int,
        *,
        current_price: Decimal,
        peak_price: Decimal,
        trigger_price: Decimal,
        checked_at: str,
    ) -> bool:
        """Write price-tracking fields.

        Returns False if the order is no longer pending, or if the stored peak
        is already higher than ``peak_price`` (the peak never moves down).
        """
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE trailing_stop_orders"
                " SET current_price = ?, peak_price = ?, trigger_price = ?, last_checked_at = ?"
                " WHERE id = ? AND status = 'pending'"
                " AND (peak_price IS NULL OR CAST(peak_price AS REAL) <= CAST(? AS REAL))",
                (str(current_price), str(peak_price), str(trigger_price), checked_at, order_id, str(peak_price)),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    def transition_status(
        self,
        order_id: int,
        *,
        from_status: OrderStatus,
        to_status: OrderStatus,
        owner_id: str | None = None,
        detail: str = "",
        **fields: str | None,
    ) -> bool:
        """Compare-and-set the order status.

        The update only applies if the row is currently in ``from_status``
        (and owned by ``owner_id`` when given). Returns True if this call
        performed the transition.

        Raises:
            ValueError: If the state machine has no ``from_status -> to_status``
                edge, or an unknown field is passed.
        """
        if not can_transition(from_status, to_status):
            msg = f"Illegal order transition {from_status.value} -> {to_status.value}"
            raise ValueError(msg)
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            msg = f"Cannot set {sorted(unknown)} during a status transition"
            raise ValueError(msg)

        assignments = ["status = ?", "is_active = ?"]
        params: list[object] = [to_status.value, int(to_status == OrderStatus.PENDING)]
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            params.append(value)
        query = f"UPDATE trailing_stop_orders SET {', '.join(assignments)} WHERE id = ? AND status = ?"  # noqa: S608
        params.extend([order_id, from_status.value])
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)

        with self._lock:
            cursor = self._conn.execute(query, params)
            applied = cursor.rowcount == 1
            if applied:
                self._record_event(order_id, from_status, to_status, detail)
            self._conn.commit()
        return applied

    # ------------------------------------------------------------------
    # Order events
    # ------------------------------------------------------------------

    def _record_event(
        self,
        order_id: int,
        from_status: OrderStatus | None,
        to_status: OrderStatus,
        detail: str,
    ) -> None:
        self._conn.execute(
            "INSERT INTO order_events (timestamp, order_id, from_status, to_status, detail) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), order_id, from_status.value if from_status else None, to_status.value, detail),
        )

    def get_order_events(self, order_id: int) -> list[dict[str, object]]:
        """Return the status history of an order, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM order_events WHERE order_id = ? ORDER BY id", (order_id,)
            ).fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def _row_to_order(row: sqlite3.Row) -> TrailingStopOrder:
        """Convert a DB row to a TrailingStopOrder dataclass."""
        return TrailingStopOrder(
            id=row["id"],
            owner_id=row["owner_id"],
            from_asset=row["from_asset"],
            from_network=row["from_network"],
            to_asset=row["to_asset"],
            to_network=row["to_network"],
            from_amount=Decimal(row["from_amount"]),
            settle_address=row["settle_address"],
            trailing_percentage=Decimal(row["trailing_percentage"]),
            status=OrderStatus(row["status"]),
            peak_price=_opt_decimal(row["peak_price"]),
            current_price=_opt_decimal(row["current_price"]),
            trigger_price=_opt_decimal(row["trigger_price"]),
            external_order_id=row["external_order_id"],
            settle_amount=row["settle_amount"],
            error_message=row["error_message"],
            created_at=row["created_at"] or "",
            last_checked_at=row["last_checked_at"],
            triggered_at=row["triggered_at"],
            expires_at=row["expires_at"],
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()


def _opt_decimal(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)
