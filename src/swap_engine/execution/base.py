"""Swap provider base class and swap result model."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass
class SwapResult:
    """A quote that the provider accepted (and, with a settle address, placed)."""

    external_order_id: str
    settle_amount: str
    settle_asset: str
    deposit_amount: str = ""
    deposit_address: str | None = None
    deposit_memo: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SwapResult":
        """Rebuild a result from :meth:`to_dict` output."""
        return cls(
            external_order_id=str(data["external_order_id"]),
            settle_amount=str(data.get("settle_amount", "")),
            settle_asset=str(data.get("settle_asset", "")),
            deposit_amount=str(data.get("deposit_amount", "")),
            deposit_address=data.get("deposit_address"),
            deposit_memo=data.get("deposit_memo"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_order_id": self.external_order_id,
            "settle_amount": self.settle_amount,
            "settle_asset": self.settle_asset,
            "deposit_amount": self.deposit_amount,
            "deposit_address": self.deposit_address,
            "deposit_memo": self.deposit_memo,
        }


class SwapProvider(ABC):
    """Base class for swap quote/execution backends."""

    @abstractmethod
    def quote_and_execute(
        self,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: Decimal,
        settle_address: str | None = None,
    ) -> SwapResult:
        """Quote a swap and, when ``settle_address`` is given, place it.

        Raises:
            ProviderError: If the provider rejects the request or cannot be reached.
        """
