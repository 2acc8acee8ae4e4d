# Overview: Fire-and-forget notification hooks (order created, payment received, ...).

"""
Notifications are delivered by external collaborators (push, SMS). The
engine only calls registered handlers AFTER its transaction has committed.

- A handler failure is logged and never propagates: the business operation
  already happened and must not be reported as failed.
- Handlers receive (event_name, payload) with JSON-friendly payloads.
"""

from __future__ import annotations

from typing import Callable

from flask import Flask, current_app

ORDER_CREATED = "order.created"
ORDER_CANCELLED = "order.cancelled"
PAYMENT_RECEIVED = "payment.received"
PAYMENT_REFUNDED = "payment.refunded"
DELIVERY_COMPLETED = "delivery.completed"
DELIVERY_FAILED = "delivery.failed"
REGISTER_CLOSED = "register.closed"

_EXTENSION_KEY = "creditline.notifiers"

Notifier = Callable[[str, dict], None]


def init_app(app: Flask) -> None:
    app.extensions.setdefault(_EXTENSION_KEY, [])


def register_notifier(app: Flask, handler: Notifier) -> None:
    app.extensions.setdefault(_EXTENSION_KEY, []).append(handler)


def notify(event: str, payload: dict) -> None:
    for handler in list(current_app.extensions.get(_EXTENSION_KEY, [])):
        try:
            handler(event, payload)
        except Exception:
            current_app.logger.exception("Notifier %r failed for %s", handler, event)
