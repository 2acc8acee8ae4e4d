# Overview: Delivery settlement; drives delivery status and turns outcomes into ledger and register effects.

"""
Delivery Settlement Manager

complete_delivery is one transaction:
    lock customer -> lock delivery -> lock order(s) -> record the collection
    through the payment allocator (delivered order first, then FIFO) ->
    mark delivered -> post to the deliverer's register for today

fail_delivery never reverses debt: the customer still owes for the order
until it is cancelled. The order goes back to READY for a new attempt,
which is a new delivery row linked through previous_delivery_id.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, CustomerNotFound, DeliveryNotFound, OrderNotFound, UserNotFound, ValidationError
from ..extensions import db
from ..models import Customer, Delivery, DeliveryStatus, Order, OrderStatus, Payment, User, UserRole
from ..money import ZERO
from ..time_utils import parse_iso_date, utcnow
from ..validation import parse_amount, parse_payment_mode
from . import idempotency_service, notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .lifecycle_service import (
    DELIVERY_ACTIVE,
    InvalidStateTransition,
    coerce_delivery_status,
    require_delivery_transition,
    require_order_transition,
)
from .payment_service import apply_payment_locked
from .register_service import get_or_create_register_locked, post_collection
from .sequence_service import next_receipt_number, org_business_date


class DeliveryAlreadyActive(ConflictError):
    code = "DELIVERY_ALREADY_ACTIVE"


# Statuses a deliverer reports on the road; delivered/failed have their own operations.
ROAD_STATUSES = frozenset({
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.ARRIVED,
})


def _load_delivery(delivery_id: int) -> Delivery:
    delivery = db.session.get(Delivery, delivery_id)
    if not delivery:
        raise DeliveryNotFound(delivery_id)
    return delivery


def _lock_delivery(delivery_id: int) -> Delivery:
    return lock_for_update(db.session.query(Delivery).filter_by(id=delivery_id)).first()


def _lock_order(order_id: int) -> Order:
    return lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()


def _load_deliverer(deliverer_id: int, org_id: int) -> User:
    user = db.session.get(User, deliverer_id)
    if not user or user.org_id != org_id:
        raise UserNotFound(deliverer_id)
    if user.role != UserRole.DELIVERER or not user.is_active:
        raise ValidationError(
            f"User {deliverer_id} is not an active deliverer",
            details={"field": "deliverer_id", "role": user.role.value, "is_active": user.is_active},
        )
    return user


def _coerce_date(value, field: str) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return parse_iso_date(value)
    except (AttributeError, TypeError, ValueError):
        raise ValidationError(f"{field} must be YYYY-MM-DD", details={"field": field})


# =============================================================================
# DISPATCH
# =============================================================================

def create_delivery(
    order_id: int,
    *,
    scheduled_date=None,
    previous_delivery_id: int | None = None,
) -> Delivery:
    """
    Open a delivery for an order.

    An order has at most one active delivery. A re-delivery must point at
    the failed attempt it replaces.
    """
    scheduled_date = _coerce_date(scheduled_date, "scheduled_date")

    def _op():
        begin_write()
        order = _lock_order(order_id)
        if not order:
            raise OrderNotFound(order_id)
        if order.status in (OrderStatus.CANCELLED, OrderStatus.DELIVERED):
            raise InvalidStateTransition(
                f"Order {order.order_number} is {order.status.value} and cannot be delivered",
                details={"order_id": order.id, "status": order.status.value},
            )

        active = (
            db.session.query(Delivery)
            .filter(Delivery.order_id == order.id, Delivery.status.in_(list(DELIVERY_ACTIVE)))
            .first()
        )
        if active:
            raise DeliveryAlreadyActive(
                f"Order {order.order_number} already has delivery {active.id} in progress",
                details={"order_id": order.id, "delivery_id": active.id},
            )

        if previous_delivery_id is not None:
            previous = db.session.get(Delivery, previous_delivery_id)
            if not previous or previous.order_id != order.id:
                raise DeliveryNotFound(previous_delivery_id)
            if previous.status != DeliveryStatus.FAILED:
                raise InvalidStateTransition(
                    f"Delivery {previous.id} has not failed; only failed deliveries are re-attempted",
                    details={"delivery_id": previous.id, "status": previous.status.value},
                )

        delivery = Delivery(
            org_id=order.org_id,
            order_id=order.id,
            customer_id=order.customer_id,
            status=DeliveryStatus.PENDING,
            scheduled_date=scheduled_date,
            total_to_collect=ZERO,
            previous_delivery_id=previous_delivery_id,
        )
        db.session.add(delivery)
        db.session.commit()
        return delivery

    delivery = run_with_retry(_op)
    current_app.logger.info("Delivery %s opened for order %s", delivery.id, order_id)
    return delivery


def assign_delivery(delivery_id: int, deliverer_id: int) -> Delivery:
    """
    Hand a pending delivery to a deliverer.

    total_to_collect is snapshotted here as the customer's whole debt: the
    order's amount due plus any standing debt from earlier orders.
    """
    existing = _load_delivery(delivery_id)
    _load_deliverer(deliverer_id, existing.org_id)
    customer_id = existing.customer_id

    def _op():
        begin_write()
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        delivery = _lock_delivery(delivery_id)
        order = _lock_order(delivery.order_id)

        require_delivery_transition(delivery, DeliveryStatus.ASSIGNED)
        require_order_transition(order, OrderStatus.ASSIGNED)

        delivery.deliverer_id = deliverer_id
        delivery.status = DeliveryStatus.ASSIGNED
        delivery.assigned_at = utcnow()
        delivery.total_to_collect = customer.current_debt
        order.status = OrderStatus.ASSIGNED

        db.session.commit()
        return delivery

    delivery = run_with_retry(_op)
    current_app.logger.info(
        "Delivery %s assigned to %s (to collect %s)", delivery.id, deliverer_id, delivery.total_to_collect
    )
    return delivery


def advance_delivery(delivery_id: int, new_status) -> Delivery:
    """Report progress on the road: picked_up, in_transit or arrived."""
    target = coerce_delivery_status(new_status)
    if target not in ROAD_STATUSES:
        raise InvalidStateTransition(
            f"Use complete or fail to move a delivery to {target.value}",
            details={"to": target.value, "allowed": sorted(s.value for s in ROAD_STATUSES)},
        )
    order_id = _load_delivery(delivery_id).order_id

    def _op():
        begin_write()
        delivery = _lock_delivery(delivery_id)
        order = _lock_order(order_id)

        require_delivery_transition(delivery, target)
        now = utcnow()
        if target == DeliveryStatus.PICKED_UP:
            require_order_transition(order, OrderStatus.IN_DELIVERY)
            order.status = OrderStatus.IN_DELIVERY
            delivery.picked_up_at = now
        elif target == DeliveryStatus.ARRIVED:
            delivery.arrived_at = now
        delivery.status = target

        db.session.commit()
        return delivery

    return run_with_retry(_op)


# =============================================================================
# SETTLEMENT
# =============================================================================

def complete_delivery(
    delivery_id: int,
    amount_collected,
    mode: str = "cash",
    proof: Optional[dict] = None,
) -> Delivery:
    """
    Settle a delivery.

    Legal from picked_up, in_transit or arrived. What was collected goes
    through the payment allocator (the delivered order first, then FIFO);
    a shortfall is not booked again, the order's debt already covers it.

    Register effects for the deliverer's business day:
        expected_collection += total_to_collect
        actual_collection   += amount_collected
        new_debt_created    += amount still due on the delivered order

    Raises RegisterClosed if today's register is already closed and
    OverpaymentNotSupported if more than the customer's debt is collected.
    """
    amount = parse_amount(amount_collected, "amount_collected", allow_zero=True)
    mode = parse_payment_mode(mode)
    if proof is not None and not isinstance(proof, dict):
        raise ValidationError("proof must be an object", details={"field": "proof"})

    existing = _load_delivery(delivery_id)
    org_id = existing.org_id
    customer_id = existing.customer_id

    def _op():
        receipt_number = next_receipt_number(org_id) if amount > ZERO else None

        begin_write()
        lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        delivery = _lock_delivery(delivery_id)
        require_delivery_transition(delivery, DeliveryStatus.DELIVERED)
        order = _lock_order(delivery.order_id)
        require_order_transition(order, OrderStatus.DELIVERED)

        now = utcnow()
        payment = None
        if amount > ZERO:
            payment = apply_payment_locked(
                customer_id,
                amount,
                mode,
                receipt_number=receipt_number,
                order_id=order.id,
                delivery_id=delivery.id,
                actor_user_id=delivery.deliverer_id,
                notes=f"Collected on delivery {delivery.id}",
                now=now,
            )

        delivery.amount_collected = amount
        delivery.collection_mode = mode
        delivery.proof_of_delivery = proof
        delivery.status = DeliveryStatus.DELIVERED
        delivery.completed_at = now

        order.status = OrderStatus.DELIVERED
        order.delivered_at = now

        register = get_or_create_register_locked(org_id, delivery.deliverer_id, org_business_date(org_id, now))
        post_collection(
            register,
            expected=delivery.total_to_collect,
            collected=amount,
            mode=mode,
            new_debt=order.total - order.amount_paid,
            completed=1,
        )
        delivery.register_id = register.id

        db.session.commit()
        return delivery, payment

    delivery, payment = run_with_retry(_op)
    current_app.logger.info(
        "Delivery %s completed: collected %s of %s",
        delivery.id, delivery.amount_collected, delivery.total_to_collect,
    )
    if payment is not None:
        notification_service.notify(notification_service.PAYMENT_RECEIVED, payment.to_dict())
    notification_service.notify(notification_service.DELIVERY_COMPLETED, delivery.to_dict())
    return delivery


def fail_delivery(delivery_id: int, reason: str, reschedule_date=None) -> Delivery:
    """
    Mark a delivery failed.

    No debt is reversed; the order returns to READY so it can be dispatched
    again. reschedule_date is recorded for the dispatcher, nothing is
    scheduled here.
    """
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("Failure reason is required", details={"field": "reason"})
    reason = reason.strip()
    reschedule_date = _coerce_date(reschedule_date, "reschedule_date")
    existing = _load_delivery(delivery_id)
    org_id = existing.org_id

    def _op():
        begin_write()
        delivery = _lock_delivery(delivery_id)
        require_delivery_transition(delivery, DeliveryStatus.FAILED)
        order = _lock_order(delivery.order_id)

        now = utcnow()
        delivery.status = DeliveryStatus.FAILED
        delivery.failure_reason = reason[:255]
        delivery.reschedule_date = reschedule_date
        delivery.failed_at = now

        if order.status in (OrderStatus.ASSIGNED, OrderStatus.IN_DELIVERY):
            require_order_transition(order, OrderStatus.READY)
            order.status = OrderStatus.READY

        if delivery.deliverer_id is not None:
            register = get_or_create_register_locked(org_id, delivery.deliverer_id, org_business_date(org_id, now))
            # A failure collects nothing; a closed register keeps its closing counts.
            if not register.is_closed:
                post_collection(register, failed=1)
                delivery.register_id = register.id

        db.session.commit()
        return delivery

    delivery = run_with_retry(_op)
    current_app.logger.info("Delivery %s failed: %s", delivery.id, reason)
    notification_service.notify(notification_service.DELIVERY_FAILED, delivery.to_dict())
    return delivery


def collect_debt(
    customer_id: int,
    deliverer_id: int,
    amount,
    mode: str = "cash",
    idempotency_key: Optional[str] = None,
    *,
    notes: Optional[str] = None,
) -> Payment:
    """
    A deliverer collects standing debt without delivering an order.

    The payment is allocated FIFO and the collection lands in the
    deliverer's register for today (actual_collection only).
    """
    amount = parse_amount(amount)
    mode = parse_payment_mode(mode)
    key = idempotency_service.normalize_key(idempotency_key)

    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise CustomerNotFound(customer_id)
    org_id = customer.org_id
    _load_deliverer(deliverer_id, org_id)
    request_hash = idempotency_service.fingerprint(
        customer_id=customer_id, deliverer_id=deliverer_id, amount=str(amount), mode=mode
    )

    def _replay():
        payment_id = idempotency_service.lookup(
            org_id=org_id, scope=idempotency_service.COLLECTION_SCOPE, key=key, request_hash=request_hash
        )
        return db.session.get(Payment, payment_id) if payment_id else None

    def _op():
        replay = _replay()
        if replay is not None:
            return replay, False

        receipt_number = next_receipt_number(org_id)
        begin_write()

        replay = _replay()
        if replay is not None:
            return replay, False

        now = utcnow()
        payment = apply_payment_locked(
            customer_id,
            amount,
            mode,
            receipt_number=receipt_number,
            actor_user_id=deliverer_id,
            notes=notes,
            idempotency_key=key,
            now=now,
        )
        register = get_or_create_register_locked(org_id, deliverer_id, org_business_date(org_id, now))
        post_collection(register, collected=amount, mode=mode)

        try:
            idempotency_service.remember(
                org_id=org_id,
                scope=idempotency_service.COLLECTION_SCOPE,
                key=key,
                request_hash=request_hash,
                entity_id=payment.id,
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            replay = _replay()
            if replay is None:
                raise
            return replay, False
        return payment, True

    payment, created = run_with_retry(_op)
    if created:
        current_app.logger.info(
            "Deliverer %s collected %s from customer %s (%s)",
            deliverer_id, payment.amount, customer_id, payment.receipt_number,
        )
        notification_service.notify(notification_service.PAYMENT_RECEIVED, payment.to_dict())
    return payment


# =============================================================================
# READ
# =============================================================================

def get_delivery(delivery_id: int, org_id: int | None = None) -> Delivery:
    delivery = db.session.get(Delivery, delivery_id)
    if not delivery or (org_id is not None and delivery.org_id != org_id):
        raise DeliveryNotFound(delivery_id)
    return delivery


def list_deliveries(
    org_id: int,
    *,
    deliverer_id: int | None = None,
    status=None,
    scheduled_date: Optional[date] = None,
) -> list[Delivery]:
    query = db.session.query(Delivery).filter(Delivery.org_id == org_id)
    if deliverer_id is not None:
        query = query.filter(Delivery.deliverer_id == deliverer_id)
    if status is not None:
        query = query.filter(Delivery.status == coerce_delivery_status(status))
    if scheduled_date is not None:
        query = query.filter(Delivery.scheduled_date == scheduled_date)
    return query.order_by(Delivery.id.asc()).all()
