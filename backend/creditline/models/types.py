from __future__ import annotations

import enum

from sqlalchemy.types import BigInteger, TypeDecorator

from ..extensions import db
from ..money import from_cents, to_cents


class Money(TypeDecorator):
    """
    Fixed-point amount stored as integer cents, exposed as Decimal("0.00").

    All monetary columns use this type so ledger arithmetic never touches
    floating point, whatever the backing database.
    """
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_cents(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_cents(value)


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    ASSIGNED = "assigned"
    IN_DELIVERY = "in_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"
    DELIVERED = "delivered"
    FAILED = "failed"


class PaymentType(str, enum.Enum):
    ORDER_PAYMENT = "order_payment"
    DEBT_PAYMENT = "debt_payment"
    REFUND = "refund"


class LedgerEntryType(str, enum.Enum):
    ORDER_CREATED = "order_created"
    ORDER_CANCELLED = "order_cancelled"
    PAYMENT = "payment"


class StockMovementType(str, enum.Enum):
    RECEIPT = "receipt"
    ORDER_RESERVED = "order_reserved"
    ORDER_CANCELLED = "order_cancelled"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    DELIVERER = "deliverer"


def enum_column_type(enum_cls):
    """Store enum values (not names) as plain strings; portable across SQLite/Postgres."""
    return db.Enum(
        enum_cls,
        name=f"{enum_cls.__name__.lower()}_enum",
        native_enum=False,
        validate_strings=True,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )
