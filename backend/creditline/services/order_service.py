# Overview: Order lifecycle; creation against the credit line, status changes and cancellation.

"""
Order Lifecycle Manager

create_order is one transaction:
    lock customer -> lock products (ascending id) -> check stock -> snapshot
    prices -> check credit -> insert order + items -> decrement stock ->
    book debt -> commit

Any failure rolls everything back; nothing partial is ever visible.

cancel_order is the exact mirror: stock restored per item, and the UNPAID
remainder (total - amount_paid) is taken back off the debt. Money already
paid is not un-paid; it leaves through payment_service.refund_payment.
"""

from __future__ import annotations

from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, CustomerNotFound, OrderNotFound, ProductNotFound, ValidationError
from ..extensions import db
from ..models import (
    Customer,
    Delivery,
    DeliveryStatus,
    LedgerEntryType,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    StockMovementType,
)
from ..money import ZERO, to_money
from ..time_utils import utcnow
from ..validation import parse_order_items
from . import idempotency_service, notification_service
from .concurrency import begin_write, lock_for_update, lock_rows, run_with_retry
from .ledger_service import adjust_debt, adjust_stock, check_credit, check_stock
from .lifecycle_service import (
    DELIVERY_ACTIVE,
    ORDER_MANUAL_TRANSITIONS,
    InvalidStateTransition,
    coerce_order_status,
    require_delivery_transition,
    require_order_transition,
)
from .sequence_service import next_order_number, org_business_date


class CustomerInactive(ConflictError):
    code = "CUSTOMER_INACTIVE"


class ProductUnavailable(ConflictError):
    code = "PRODUCT_UNAVAILABLE"


def _load_customer(customer_id: int, org_id: int | None = None) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer or (org_id is not None and customer.org_id != org_id):
        raise CustomerNotFound(customer_id)
    return customer


# =============================================================================
# CREATE
# =============================================================================

def create_order(
    customer_id: int,
    org_id: int,
    items,
    idempotency_key: Optional[str] = None,
    *,
    actor_user_id: int | None = None,
    notes: Optional[str] = None,
) -> Order:
    """
    Book a new order against the customer's credit line.

    Args:
        items: [{"product_id": int, "quantity": int}, ...]; repeated
            products are merged before the stock check
        idempotency_key: client token; a retry with the same key and items
            returns the order committed the first time

    Raises:
        CustomerNotFound, CustomerInactive, ProductNotFound,
        ProductUnavailable, InsufficientStock (with available stock),
        CreditLimitExceeded (with available credit), IdempotencyKeyReused
    """
    lines_in = parse_order_items(items)
    key = idempotency_service.normalize_key(idempotency_key)
    request_hash = idempotency_service.fingerprint(
        customer_id=customer_id,
        items=sorted(lines_in),
        notes=notes,
    )

    def _replay():
        order_id = idempotency_service.lookup(
            org_id=org_id, scope=idempotency_service.ORDER_SCOPE, key=key, request_hash=request_hash
        )
        return db.session.get(Order, order_id) if order_id else None

    def _op():
        replay = _replay()
        if replay is not None:
            return replay, False

        _load_customer(customer_id, org_id)
        order_number = next_order_number(org_id)

        begin_write()

        # A concurrent request with the same key may have committed while we waited
        replay = _replay()
        if replay is not None:
            return replay, False

        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if not customer.is_active:
            raise CustomerInactive(
                f"Customer {customer.name} is inactive",
                details={"customer_id": customer.id},
            )

        products = lock_rows(Product, [pid for pid, _ in lines_in])
        for product_id, quantity in lines_in:
            product = products.get(product_id)
            if product is None or product.org_id != org_id:
                raise ProductNotFound(product_id)
            if not product.is_active:
                raise ProductUnavailable(
                    f"Product {product.name} ({product.sku}) is not available",
                    details={"product_id": product.id, "sku": product.sku},
                )
            check_stock(product, quantity)

        total = ZERO
        priced = []
        for product_id, quantity in lines_in:
            product = products[product_id]
            line_total = to_money(product.price * quantity)
            total += line_total
            priced.append((product, quantity, line_total))

        check_credit(customer, total)

        now = utcnow()
        order = Order(
            org_id=org_id,
            customer_id=customer.id,
            order_number=order_number,
            status=OrderStatus.PENDING,
            total=total,
            amount_paid=ZERO,
            business_date=org_business_date(org_id, now),
            notes=notes,
            idempotency_key=key,
            created_by_user_id=actor_user_id,
            created_at=now,
        )
        db.session.add(order)
        db.session.flush()

        for product, quantity, line_total in priced:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price=product.price,
                line_total=line_total,
            ))

        for product, quantity, _ in sorted(priced, key=lambda p: p[0].id):
            adjust_stock(
                product.id,
                -quantity,
                movement_type=StockMovementType.ORDER_RESERVED,
                order_id=order.id,
                actor_user_id=actor_user_id,
                note=f"Order {order_number}",
                occurred_at=now,
            )

        adjust_debt(
            customer.id,
            total,
            entry_type=LedgerEntryType.ORDER_CREATED,
            order_id=order.id,
            actor_user_id=actor_user_id,
            reference=order_number,
            occurred_at=now,
        )
        customer.last_order_at = now

        try:
            idempotency_service.remember(
                org_id=org_id,
                scope=idempotency_service.ORDER_SCOPE,
                key=key,
                request_hash=request_hash,
                entity_id=order.id,
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            replay = _replay()
            if replay is None:
                raise
            return replay, False
        return order, True

    order, created = run_with_retry(_op)
    if created:
        current_app.logger.info(
            "Order %s created for customer %s (total %s)", order.order_number, customer_id, order.total
        )
        notification_service.notify(notification_service.ORDER_CREATED, order.to_dict(include_items=False))
    return order


# =============================================================================
# CANCEL
# =============================================================================

def cancel_order(order_id: int, reason: str, actor_user_id: int | None = None) -> Order:
    """
    Cancel an order that has not been handed to a delivery yet.

    Restores stock for every item and reverses the unpaid remainder of the
    debt. Cancelling twice raises InvalidStateTransition; nothing is
    reversed a second time.

    A delivery opened for the order but not yet assigned is failed with
    the cancellation reason.
    """
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("Cancellation reason is required", details={"field": "reason"})
    reason = reason.strip()

    def _op():
        existing = db.session.get(Order, order_id)
        if not existing:
            raise OrderNotFound(order_id)
        customer_id = existing.customer_id

        begin_write()
        lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        delivery = lock_for_update(
            db.session.query(Delivery).filter(
                Delivery.order_id == order_id,
                Delivery.status.in_(list(DELIVERY_ACTIVE)),
            )
        ).first()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()

        require_order_transition(order, OrderStatus.CANCELLED)
        if delivery is not None:
            require_delivery_transition(delivery, DeliveryStatus.FAILED)

        now = utcnow()
        for item in sorted(order.items, key=lambda i: i.product_id):
            adjust_stock(
                item.product_id,
                item.quantity,
                movement_type=StockMovementType.ORDER_CANCELLED,
                order_id=order.id,
                actor_user_id=actor_user_id,
                note=f"Cancel {order.order_number}",
                occurred_at=now,
            )

        unpaid = order.total - order.amount_paid
        if unpaid > ZERO:
            adjust_debt(
                customer_id,
                -unpaid,
                entry_type=LedgerEntryType.ORDER_CANCELLED,
                reversal=True,
                order_id=order.id,
                actor_user_id=actor_user_id,
                reference=order.order_number,
                note=reason[:255],
                occurred_at=now,
            )

        order.status = OrderStatus.CANCELLED
        order.cancelled_at = now
        order.cancelled_by_user_id = actor_user_id
        order.cancel_reason = reason[:255]

        if delivery is not None:
            delivery.status = DeliveryStatus.FAILED
            delivery.failure_reason = f"Order cancelled: {reason}"[:255]
            delivery.failed_at = now

        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s cancelled: %s", order.order_number, reason)
    notification_service.notify(notification_service.ORDER_CANCELLED, order.to_dict(include_items=False))
    return order


# =============================================================================
# STATUS
# =============================================================================

def update_order_status(order_id: int, new_status, actor_user_id: int | None = None) -> Order:
    """
    Move an order along the warehouse edges (draft..ready).

    Delivery-driven statuses are owned by delivery_service and cancellation
    by cancel_order; both are refused here.
    """
    target = coerce_order_status(new_status)

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise OrderNotFound(order_id)

        require_order_transition(order, target)
        if (order.status, target) not in ORDER_MANUAL_TRANSITIONS:
            raise InvalidStateTransition(
                f"Order {order.order_number} cannot be moved to {target.value} directly",
                details={"order_id": order.id, "from": order.status.value, "to": target.value},
            )

        order.status = target
        if target == OrderStatus.CONFIRMED:
            order.confirmed_at = utcnow()

        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order %s moved to %s by user %s", order.order_number, target.value, actor_user_id
    )
    return order


# =============================================================================
# READ
# =============================================================================

def get_order(order_id: int, org_id: int | None = None) -> Order:
    order = db.session.get(Order, order_id)
    if not order or (org_id is not None and order.org_id != org_id):
        raise OrderNotFound(order_id)
    return order


def list_customer_orders(customer_id: int, *, status=None, open_only: bool = False) -> list[Order]:
    """Orders oldest first. `open_only` keeps non-cancelled orders with amount due."""
    _load_customer(customer_id)
    query = db.session.query(Order).filter(Order.customer_id == customer_id)
    if status is not None:
        query = query.filter(Order.status == coerce_order_status(status))
    if open_only:
        query = query.filter(
            Order.status != OrderStatus.CANCELLED,
            Order.amount_paid < Order.total,
        )
    return query.order_by(Order.created_at.asc(), Order.id.asc()).all()
