"""SideShiftProvider: quotes and places fixed-rate shifts via the SideShift API."""

import json
import logging
import os
import urllib.error
import urllib.request
from decimal import Decimal
from typing import Any

from swap_engine.config import SwapProviderConfig
from swap_engine.errors import ProviderError
from swap_engine.execution.base import SwapProvider, SwapResult

logger = logging.getLogger(__name__)


class SideShiftProvider(SwapProvider):
    """Execute swaps through SideShift's fixed-rate flow.

    A quote is requested first; when a settle address is supplied the quote
    is turned into a fixed shift with the settle address doubling as the
    refund address. Without a settle address only the quote is returned.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://sideshift.ai/api/v2",
        affiliate_id: str = "",
        user_ip: str = "127.0.0.1",
        timeout: int = 30,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._affiliate_id = affiliate_id
        self._user_ip = user_ip
        self._timeout = timeout

    @staticmethod
    def from_env(config: SwapProviderConfig) -> "SideShiftProvider":
        """Create a provider whose secrets come from the env vars named in ``config``."""
        api_key = os.environ.get(config.api_key_env)
        if not api_key:
            msg = f"{config.api_key_env} environment variable is required for live swaps"
            raise ValueError(msg)
        return SideShiftProvider(
            api_key=api_key,
            base_url=config.base_url,
            affiliate_id=os.environ.get(config.affiliate_id_env, ""),
            user_ip=config.user_ip,
            timeout=config.timeout,
        )

    def quote_and_execute(
        self,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: Decimal,
        settle_address: str | None = None,
    ) -> SwapResult:
        quote = self._post(
            "/quotes",
            {
                "depositCoin": from_asset,
                "depositNetwork": from_network,
                "settleCoin": to_asset,
                "settleNetwork": to_network,
                "depositAmount": str(amount),
                "affiliateId": self._affiliate_id,
            },
        )
        quote_id = quote.get("id")
        if not quote_id:
            msg = f"Quote failed for {from_asset} to {to_asset}: no quote id returned"
            raise ProviderError(msg)

        if settle_address is None:
            return SwapResult(
                external_order_id=str(quote_id),
                settle_amount=str(quote.get("settleAmount", "")),
                settle_asset=str(quote.get("settleCoin", to_asset)),
                deposit_amount=str(quote.get("depositAmount", amount)),
                raw=quote,
            )

        payload: dict[str, Any] = {
            "quoteId": quote_id,
            "settleAddress": settle_address,
            "refundAddress": settle_address,
        }
        if self._affiliate_id:
            payload["affiliateId"] = self._affiliate_id
        shift = self._post("/shifts/fixed", payload)
        shift_id = shift.get("id")
        if not shift_id:
            msg = f"Order creation failed for {to_asset}"
            raise ProviderError(msg)

        deposit = shift.get("depositAddress")
        deposit_address = deposit.get("address") if isinstance(deposit, dict) else deposit
        deposit_memo = deposit.get("memo") if isinstance(deposit, dict) else None
        logger.info("Placed SideShift order %s (%s %s -> %s)", shift_id, amount, from_asset, to_asset)
        return SwapResult(
            external_order_id=str(shift_id),
            settle_amount=str(shift.get("settleAmount", quote.get("settleAmount", ""))),
            settle_asset=str(quote.get("settleCoin", to_asset)),
            deposit_amount=str(quote.get("depositAmount", amount)),
            deposit_address=deposit_address,
            deposit_memo=deposit_memo,
            raw=shift,
        )

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        req = urllib.request.Request(
            f"{self._base_url}{path}",
            data=json.dumps(body).encode(),
            headers={
                "Content-Type": "application/json",
                "x-sideshift-secret": self._api_key,
                "x-user-ip": self._user_ip,
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                data = json.loads(resp.read().decode())
        except urllib.error.HTTPError as exc:
            raise ProviderError(_error_message(exc)) from exc
        except (OSError, ValueError) as exc:
            msg = f"SideShift request to {path} failed: {exc}"
            raise ProviderError(msg) from exc

        if not isinstance(data, dict):
            msg = f"Unexpected SideShift response from {path}"
            raise ProviderError(msg)
        if isinstance(data.get("error"), dict):
            raise ProviderError(str(data["error"].get("message", "Unknown SideShift error")))
        return data


def _error_message(exc: urllib.error.HTTPError) -> str:
    """Extract ``error.message`` from a SideShift error body, falling back to the HTTP status."""
    try:
        body = json.loads(exc.read().decode())
        return str(body["error"]["message"])
    except (OSError, ValueError, KeyError, TypeError):
        return f"SideShift HTTP {exc.code}"
