# Overview: Fire-and-forget notification dispatch for post-commit business events.

"""
Notification dispatch.

Core operations announce a few business events once their transaction has
committed:

- order.fulfilled   an order reached its terminal fulfillment status
- item.low_stock    a STOCK_OUT left stock at or below the item threshold
- order.hard_deleted

Delivery (websocket push, e-mail, persistence of a notification inbox) is
someone else's job. The default dispatcher only logs. Any dispatcher error
is logged and dropped: a notification can never undo or fail a committed
business operation.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)

EVENT_ORDER_FULFILLED = "order.fulfilled"
EVENT_LOW_STOCK = "item.low_stock"
EVENT_ORDER_HARD_DELETED = "order.hard_deleted"


class NotificationDispatcher(Protocol):
    def send(self, event_type: str, title: str, message: str, metadata: dict | None = None) -> None:
        ...


class LoggingDispatcher:
    """Default dispatcher: writes each notification to the application log."""

    def send(self, event_type: str, title: str, message: str, metadata: dict | None = None) -> None:
        logger.info("notification %s: %s - %s %s", event_type, title, message, metadata or {})


class RecordingDispatcher:
    """Keeps notifications in memory; handy for tests and the CLI."""

    def __init__(self):
        self.sent: list[dict] = []

    def send(self, event_type: str, title: str, message: str, metadata: dict | None = None) -> None:
        self.sent.append({
            "event_type": event_type,
            "title": title,
            "message": message,
            "metadata": metadata or {},
        })

    def of_type(self, event_type: str) -> list[dict]:
        return [n for n in self.sent if n["event_type"] == event_type]


def dispatch(dispatcher, event_type: str, title: str, message: str, metadata: dict | None = None) -> None:
    """Send one notification; failures are logged, never raised."""
    if dispatcher is None:
        return
    try:
        dispatcher.send(event_type, title, message, metadata)
    except Exception:
        logger.exception("Failed to dispatch %s notification", event_type)


def get_dispatcher(app=None):
    """Return the dispatcher registered on the Flask app (LoggingDispatcher by default)."""
    if app is None:
        from flask import current_app
        app = current_app
    return app.extensions.setdefault("orderledger.notifications", LoggingDispatcher())
