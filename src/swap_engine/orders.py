"""Trailing-stop order model and its lifecycle state machine."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

_HUNDRED = Decimal(100)


class OrderStatus(str, Enum):
    """Lifecycle status of a trailing-stop order."""

    PENDING = "pending"
    TRIGGERED = "triggered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.EXPIRED, OrderStatus.FAILED}
)

_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.TRIGGERED, OrderStatus.CANCELLED, OrderStatus.EXPIRED}),
    OrderStatus.TRIGGERED: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED}),
}


def can_transition(src: OrderStatus, dst: OrderStatus) -> bool:
    """Return True if the state machine has an edge from ``src`` to ``dst``."""
    return dst in _TRANSITIONS.get(src, frozenset())


def compute_trigger_price(peak_price: Decimal, trailing_percentage: Decimal) -> Decimal:
    """Price at or below which the order fires: ``peak * (1 - pct / 100)``."""
    return peak_price * (1 - trailing_percentage / _HUNDRED)


@dataclass
class TrailingStopOrder:
    """A sell-side order that follows the peak price and fires on a retrace."""

    id: int
    owner_id: str
    from_asset: str
    from_network: str
    to_asset: str
    to_network: str
    from_amount: Decimal
    settle_address: str
    trailing_percentage: Decimal
    status: OrderStatus = OrderStatus.PENDING
    peak_price: Decimal | None = None
    current_price: Decimal | None = None
    trigger_price: Decimal | None = None
    external_order_id: str | None = None
    settle_amount: str | None = None
    error_message: str | None = None
    created_at: str = ""
    last_checked_at: str | None = None
    triggered_at: str | None = None
    expires_at: str | None = None

    @property
    def is_active(self) -> bool:
        """Only pending orders are tracked by the evaluation loop."""
        return self.status == OrderStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation; decimals are rendered as strings."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "from_asset": self.from_asset,
            "from_network": self.from_network,
            "to_asset": self.to_asset,
            "to_network": self.to_network,
            "from_amount": str(self.from_amount),
            "settle_address": self.settle_address,
            "trailing_percentage": str(self.trailing_percentage),
            "status": self.status.value,
            "is_active": self.is_active,
            "peak_price": _opt_str(self.peak_price),
            "current_price": _opt_str(self.current_price),
            "trigger_price": _opt_str(self.trigger_price),
            "external_order_id": self.external_order_id,
            "settle_amount": self.settle_amount,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "last_checked_at": self.last_checked_at,
            "triggered_at": self.triggered_at,
            "expires_at": self.expires_at,
        }


def _opt_str(value: Decimal | None) -> str | None:
    return None if value is None else str(value)
