# Overview: Order and delivery state machines as explicit transition tables.

"""
Lifecycle rules

ORDER:
    draft -> pending -> confirmed -> preparing -> ready -> assigned -> in_delivery -> delivered
    cancelled <- draft | pending | confirmed | preparing | ready

    assigned -> ready and in_delivery -> ready return an order to dispatch
    after its delivery failed. Once an order is assigned it can only be
    cancelled after the delivery failure brought it back to ready.

DELIVERY:
    pending -> assigned -> picked_up -> in_transit -> arrived -> delivered
    picked_up -> arrived (no transit scan)
    delivered from picked_up | in_transit | arrived
    failed from any non-terminal state

    delivered and failed are terminal. A new attempt is a new delivery row.

RULES:
1. Legality is decided only by the tables below, never by ad-hoc checks
2. Terminal states have no outgoing edges
3. Same-state "transitions" are refused
"""

from __future__ import annotations

from ..errors import ConflictError, ValidationError
from ..models import DeliveryStatus, OrderStatus


class InvalidStateTransition(ConflictError):
    code = "INVALID_STATE_TRANSITION"


ORDER_CANCELLABLE = frozenset({
    OrderStatus.DRAFT,
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
})

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.PENDING, OrderStatus.CANCELLED}),
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.ASSIGNED, OrderStatus.CANCELLED}),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.IN_DELIVERY, OrderStatus.READY}),
    OrderStatus.IN_DELIVERY: frozenset({OrderStatus.DELIVERED, OrderStatus.READY}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Warehouse edges a user may drive directly; the rest belong to deliveries and cancellation.
ORDER_MANUAL_TRANSITIONS = frozenset({
    (OrderStatus.DRAFT, OrderStatus.PENDING),
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.CONFIRMED, OrderStatus.PREPARING),
    (OrderStatus.PREPARING, OrderStatus.READY),
})

DELIVERY_ACTIVE = frozenset({
    DeliveryStatus.PENDING,
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.ARRIVED,
})

DELIVERY_COMPLETABLE = frozenset({
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.ARRIVED,
})

DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.ASSIGNED, DeliveryStatus.FAILED}),
    DeliveryStatus.ASSIGNED: frozenset({DeliveryStatus.PICKED_UP, DeliveryStatus.FAILED}),
    DeliveryStatus.PICKED_UP: frozenset({
        DeliveryStatus.IN_TRANSIT,
        DeliveryStatus.ARRIVED,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.FAILED,
    }),
    DeliveryStatus.IN_TRANSIT: frozenset({
        DeliveryStatus.ARRIVED,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.FAILED,
    }),
    DeliveryStatus.ARRIVED: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.FAILED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
}


def coerce_order_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown order status '{value}'",
            details={"status": value, "allowed": [s.value for s in OrderStatus]},
        )


def coerce_delivery_status(value) -> DeliveryStatus:
    try:
        return DeliveryStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown delivery status '{value}'",
            details={"status": value, "allowed": [s.value for s in DeliveryStatus]},
        )


def can_transition_order(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return to_status in ORDER_TRANSITIONS[from_status]


def can_transition_delivery(from_status: DeliveryStatus, to_status: DeliveryStatus) -> bool:
    return to_status in DELIVERY_TRANSITIONS[from_status]


def require_order_transition(order, to_status: OrderStatus) -> None:
    """Raise InvalidStateTransition unless the order may move to `to_status`."""
    if not can_transition_order(order.status, to_status):
        raise InvalidStateTransition(
            f"Order {order.order_number} cannot go from {order.status.value} to {to_status.value}",
            details={
                "order_id": order.id,
                "from": order.status.value,
                "to": to_status.value,
                "allowed": sorted(s.value for s in ORDER_TRANSITIONS[order.status]),
            },
        )


def require_delivery_transition(delivery, to_status: DeliveryStatus) -> None:
    """Raise InvalidStateTransition unless the delivery may move to `to_status`."""
    if not can_transition_delivery(delivery.status, to_status):
        raise InvalidStateTransition(
            f"Delivery {delivery.id} cannot go from {delivery.status.value} to {to_status.value}",
            details={
                "delivery_id": delivery.id,
                "from": delivery.status.value,
                "to": to_status.value,
                "allowed": sorted(s.value for s in DELIVERY_TRANSITIONS[delivery.status]),
            },
        )
