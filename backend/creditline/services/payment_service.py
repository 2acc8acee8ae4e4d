# Overview: Payment allocator; applies money received to customer debt and open orders.

"""
Payment Allocator

ALLOCATION ORDER:
1. the explicit order, if one is given, up to its amount due
2. the customer's other open orders, oldest first (created_at, then id)

OVERPAYMENT POLICY: rejected. A payment larger than the current debt raises
OverpaymentNotSupported; the amount is never capped or coerced.

Because every payment is fully allocated, a customer's debt always equals
the sum of amount_due over their non-cancelled orders.

IMMUTABLE: Payment and PaymentAllocation rows are never edited. A refund is
a new Payment (payment_type=refund) with a negative allocation.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, CustomerNotFound, InternalError, OrderNotFound, PaymentNotFound
from ..extensions import db
from ..models import (
    Customer,
    LedgerEntryType,
    Order,
    OrderStatus,
    Payment,
    PaymentAllocation,
    PaymentType,
)
from ..money import ZERO
from ..time_utils import utcnow
from ..validation import parse_amount, parse_payment_mode
from . import idempotency_service, notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .ledger_service import adjust_debt
from .sequence_service import next_receipt_number


class OverpaymentNotSupported(ConflictError):
    code = "OVERPAYMENT_NOT_SUPPORTED"


class InvalidPaymentTarget(ConflictError):
    code = "INVALID_PAYMENT_TARGET"


class RefundExceedsPaid(ConflictError):
    code = "REFUND_EXCEEDS_PAID"


def _load_customer(customer_id: int, org_id: int | None = None) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer or (org_id is not None and customer.org_id != org_id):
        raise CustomerNotFound(customer_id)
    return customer


def _allocation_targets(customer_id: int, explicit_order_id: int | None) -> tuple[Order | None, list[Order]]:
    """
    Lock the customer's open orders and the explicit target together, in
    one ascending-id sweep, and return (explicit order, allocation order).
    """
    criteria = and_(Order.status != OrderStatus.CANCELLED, Order.amount_paid < Order.total)
    if explicit_order_id is not None:
        criteria = or_(criteria, Order.id == explicit_order_id)
    rows = (
        lock_for_update(db.session.query(Order).filter(Order.customer_id == customer_id, criteria))
        .order_by(Order.id.asc())
        .all()
    )
    explicit_order = None
    fifo = []
    for order in rows:
        if order.id == explicit_order_id:
            explicit_order = order
        elif order.status != OrderStatus.CANCELLED and order.amount_paid < order.total:
            fifo.append(order)
    fifo.sort(key=lambda o: (o.created_at, o.id))
    if explicit_order is None:
        return None, fifo
    return explicit_order, [explicit_order] + fifo


def apply_payment_locked(
    customer_id: int,
    amount: Decimal,
    mode: str,
    *,
    receipt_number: str,
    order_id: int | None = None,
    delivery_id: int | None = None,
    actor_user_id: int | None = None,
    check_number: Optional[str] = None,
    check_bank: Optional[str] = None,
    notes: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Payment:
    """
    Apply a payment inside the caller's write transaction (no commit).

    Lock order: customer, then the customer's open orders and the explicit
    order together by ascending id.
    Shared by record_payment and the delivery settlement paths.
    """
    now = now or utcnow()
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise CustomerNotFound(customer_id)

    if order_id is not None:
        target = db.session.get(Order, order_id)
        if not target:
            raise OrderNotFound(order_id)
        if target.customer_id != customer.id:
            raise InvalidPaymentTarget(
                f"Order {target.order_number} does not belong to customer {customer.id}",
                details={"order_id": order_id, "customer_id": customer.id},
            )

    explicit_order, targets = _allocation_targets(customer.id, order_id)
    if explicit_order is not None and explicit_order.status == OrderStatus.CANCELLED:
        raise InvalidPaymentTarget(
            f"Order {explicit_order.order_number} is cancelled",
            details={"order_id": order_id},
        )

    debt_before = customer.current_debt
    if amount > debt_before:
        raise OverpaymentNotSupported(
            f"Payment of {amount} exceeds current debt of {debt_before}",
            details={
                "customer_id": customer.id,
                "current_debt": debt_before,
                "amount": amount,
                "excess": amount - debt_before,
            },
        )

    remaining = amount
    applied: list[tuple[Order, Decimal]] = []
    for order in targets:
        if remaining <= ZERO:
            break
        due = order.total - order.amount_paid
        if due <= ZERO:
            continue
        portion = min(due, remaining)
        order.amount_paid = order.amount_paid + portion
        remaining -= portion
        applied.append((order, portion))

    if remaining > ZERO:
        current_app.logger.error(
            "Customer %s debt %s exceeds open order balances; %s left unallocated",
            customer.id, debt_before, remaining,
        )
        raise InternalError(
            "Customer debt does not match open order balances",
            details={"customer_id": customer.id, "unallocated": remaining},
        )

    payment = Payment(
        org_id=customer.org_id,
        customer_id=customer.id,
        receipt_number=receipt_number,
        payment_type=PaymentType.ORDER_PAYMENT if order_id is not None else PaymentType.DEBT_PAYMENT,
        mode=mode,
        amount=amount,
        order_id=order_id,
        delivery_id=delivery_id,
        customer_debt_before=debt_before,
        customer_debt_after=debt_before - amount,
        check_number=check_number,
        check_bank=check_bank,
        notes=notes,
        idempotency_key=idempotency_key,
        collected_by_user_id=actor_user_id,
        created_at=now,
    )
    db.session.add(payment)
    db.session.flush()

    for position, (order, portion) in enumerate(applied, start=1):
        db.session.add(PaymentAllocation(
            payment_id=payment.id,
            order_id=order.id,
            position=position,
            amount_applied=portion,
        ))

    adjust_debt(
        customer.id,
        -amount,
        entry_type=LedgerEntryType.PAYMENT,
        reversal=True,
        payment_id=payment.id,
        actor_user_id=actor_user_id,
        reference=receipt_number,
        occurred_at=now,
    )
    customer.last_payment_at = now
    db.session.flush()
    return payment


# =============================================================================
# RECORD
# =============================================================================

def record_payment(
    customer_id: int,
    amount,
    mode: str,
    order_id: int | None = None,
    idempotency_key: Optional[str] = None,
    *,
    org_id: int | None = None,
    actor_user_id: int | None = None,
    check_number: Optional[str] = None,
    check_bank: Optional[str] = None,
    notes: Optional[str] = None,
) -> Payment:
    """
    Record money received from a customer and allocate it.

    Raises:
        CustomerNotFound, InvalidAmount (<= 0), OrderNotFound,
        InvalidPaymentTarget, OverpaymentNotSupported, IdempotencyKeyReused
    """
    amount = parse_amount(amount)
    mode = parse_payment_mode(mode)
    key = idempotency_service.normalize_key(idempotency_key)
    org_id = _load_customer(customer_id, org_id).org_id
    request_hash = idempotency_service.fingerprint(
        customer_id=customer_id, amount=str(amount), mode=mode, order_id=order_id
    )

    def _replay():
        payment_id = idempotency_service.lookup(
            org_id=org_id, scope=idempotency_service.PAYMENT_SCOPE, key=key, request_hash=request_hash
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

        payment = apply_payment_locked(
            customer_id,
            amount,
            mode,
            receipt_number=receipt_number,
            order_id=order_id,
            actor_user_id=actor_user_id,
            check_number=check_number,
            check_bank=check_bank,
            notes=notes,
            idempotency_key=key,
        )
        try:
            idempotency_service.remember(
                org_id=org_id,
                scope=idempotency_service.PAYMENT_SCOPE,
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
            "Payment %s of %s recorded for customer %s (debt %s -> %s)",
            payment.receipt_number, payment.amount, customer_id,
            payment.customer_debt_before, payment.customer_debt_after,
        )
        notification_service.notify(notification_service.PAYMENT_RECEIVED, payment.to_dict())
    return payment


# =============================================================================
# REFUND
# =============================================================================

def refund_payment(
    order_id: int,
    amount,
    mode: str,
    *,
    actor_user_id: int | None = None,
    reason: Optional[str] = None,
) -> Payment:
    """
    Give back money paid on a cancelled order.

    Cancellation only reversed the unpaid part of the debt, so a refund
    never touches the debt: it lowers the order's amount_paid through a
    negative allocation and leaves a refund Payment as the audit record.
    """
    amount = parse_amount(amount)
    mode = parse_payment_mode(mode)

    def _op():
        existing = db.session.get(Order, order_id)
        if not existing:
            raise OrderNotFound(order_id)
        customer_id = existing.customer_id
        receipt_number = next_receipt_number(existing.org_id)

        begin_write()
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()

        if order.status != OrderStatus.CANCELLED:
            raise InvalidPaymentTarget(
                f"Only cancelled orders can be refunded; {order.order_number} is {order.status.value}",
                details={"order_id": order.id, "status": order.status.value},
            )
        if amount > order.amount_paid:
            raise RefundExceedsPaid(
                f"Refund of {amount} exceeds {order.amount_paid} paid on {order.order_number}",
                details={"order_id": order.id, "refundable": order.amount_paid, "amount": amount},
            )

        now = utcnow()
        payment = Payment(
            org_id=order.org_id,
            customer_id=customer.id,
            receipt_number=receipt_number,
            payment_type=PaymentType.REFUND,
            mode=mode,
            amount=amount,
            order_id=order.id,
            refunded_order_id=order.id,
            customer_debt_before=customer.current_debt,
            customer_debt_after=customer.current_debt,
            notes=reason,
            collected_by_user_id=actor_user_id,
            created_at=now,
        )
        db.session.add(payment)
        db.session.flush()
        db.session.add(PaymentAllocation(
            payment_id=payment.id,
            order_id=order.id,
            position=1,
            amount_applied=-amount,
        ))
        order.amount_paid = order.amount_paid - amount

        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info(
        "Refund %s of %s issued on order %s", payment.receipt_number, payment.amount, order_id
    )
    notification_service.notify(notification_service.PAYMENT_REFUNDED, payment.to_dict())
    return payment


# =============================================================================
# READ
# =============================================================================

def get_payment(payment_id: int, org_id: int | None = None) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment or (org_id is not None and payment.org_id != org_id):
        raise PaymentNotFound(payment_id)
    return payment


def list_customer_payments(
    customer_id: int,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[Payment]:
    """Payments and refunds, oldest first. `end` is exclusive."""
    _load_customer(customer_id)
    query = db.session.query(Payment).filter(Payment.customer_id == customer_id)
    if start is not None:
        query = query.filter(Payment.created_at >= start)
    if end is not None:
        query = query.filter(Payment.created_at < end)
    return query.order_by(Payment.created_at.asc(), Payment.id.asc()).all()
