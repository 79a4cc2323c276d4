"""Alerts for trailing-stop triggers, failures and expiries.

Every alert is an :class:`Alert` record so sinks can route on its kind and
carry the order or leg it concerns.
"""

from __future__ import annotations

import json
import logging
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class AlertKind(str, Enum):
    ORDER_EXECUTED = "order_executed"
    ORDER_FAILED = "order_failed"
    ORDER_EXPIRED = "order_expired"
    LEG_FAILED = "leg_failed"
    INFO = "info"


@dataclass(frozen=True)
class Alert:
    """One alert: a human-readable message plus the entity it refers to."""

    kind: AlertKind
    message: str
    order_id: int | None = None
    leg_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"text": self.message, "kind": self.kind.value}
        if self.order_id is not None:
            payload["order_id"] = self.order_id
        if self.leg_id is not None:
            payload["leg_id"] = self.leg_id
        return payload


class AlertSink(ABC):
    """Base class for alert destinations."""

    @abstractmethod
    def send(self, alert: Alert) -> None:
        """Deliver one alert."""


class LogAlertSink(AlertSink):
    """Write alerts through the logging module, tagged with the order or leg id."""

    def send(self, alert: Alert) -> None:
        logger.warning(
            "[ALERT] %s: %s",
            alert.kind.value,
            alert.message,
            extra={"order_id": alert.order_id, "leg_id": alert.leg_id},
        )


class WebhookAlertSink(AlertSink):
    """POST alerts as JSON; ``text`` keeps chat-style webhooks working."""

    def __init__(self, url: str, *, timeout: int = 10) -> None:
        self._url = url
        self._timeout = timeout

    def send(self, alert: Alert) -> None:
        req = urllib.request.Request(
            self._url,
            data=json.dumps(alert.to_dict()).encode(),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self._timeout):  # noqa: S310
            pass


class AlertManager:
    """Fan alerts out to every registered sink.

    A failing sink is logged and skipped; alerts never interrupt order
    processing.
    """

    def __init__(self, sinks: list[AlertSink] | None = None) -> None:
        self._sinks: list[AlertSink] = list(sinks or [])

    def register(self, sink: AlertSink) -> None:
        self._sinks.append(sink)

    def alert(
        self,
        message: str,
        *,
        kind: AlertKind = AlertKind.INFO,
        order_id: int | None = None,
        leg_id: str | None = None,
    ) -> Alert:
        """Build an :class:`Alert` and deliver it to every sink."""
        record = Alert(kind=kind, message=message, order_id=order_id, leg_id=leg_id)
        for sink in self._sinks:
            try:
                sink.send(record)
            except Exception:
                logger.exception("Alert sink %s failed", type(sink).__name__)
        return record

    @property
    def sink_count(self) -> int:
        return len(self._sinks)
