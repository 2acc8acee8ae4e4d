from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z
from .types import Money, PaymentType, enum_column_type


class Payment(db.Model):
    """
    Money received from (or refunded to) a customer.

    AUDIT TRAIL:
    - `customer_debt_before` / `customer_debt_after` snapshot the debt around
      the payment
    - `allocations` is the ordered breakdown of which orders the amount
      was applied to (explicit order first, then oldest open orders)

    IMMUTABLE: a payment is never edited. A refund is a new Payment with
    payment_type=REFUND pointing back through `refunded_order_id`.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("org_id", "receipt_number", name="uq_payments_org_receipt"),
        db.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        db.Index("ix_payments_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    receipt_number = db.Column(db.String(64), nullable=False)
    payment_type = db.Column(enum_column_type(PaymentType), nullable=False, index=True)
    mode = db.Column(db.String(32), nullable=False)
    amount = db.Column(Money, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=True, index=True)
    refunded_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    customer_debt_before = db.Column(Money, nullable=False)
    customer_debt_after = db.Column(Money, nullable=False)

    check_number = db.Column(db.String(64), nullable=True)
    check_bank = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    collected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    customer = db.relationship("Customer", backref=db.backref("payments", lazy=True))
    allocations = db.relationship(
        "PaymentAllocation",
        backref="payment",
        lazy=True,
        order_by="PaymentAllocation.position",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "receipt_number": self.receipt_number,
            "payment_type": self.payment_type.value,
            "mode": self.mode,
            "amount": money_str(self.amount),
            "order_id": self.order_id,
            "delivery_id": self.delivery_id,
            "refunded_order_id": self.refunded_order_id,
            "customer_debt_before": money_str(self.customer_debt_before),
            "customer_debt_after": money_str(self.customer_debt_after),
            "check_number": self.check_number,
            "check_bank": self.check_bank,
            "notes": self.notes,
            "idempotency_key": self.idempotency_key,
            "collected_by_user_id": self.collected_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "allocations": [a.to_dict() for a in self.allocations],
        }


class PaymentAllocation(db.Model):
    """
    One line of a payment's allocation breakdown.

    `amount_applied` is positive for payments and negative for refunds.
    `position` keeps the order in which the allocator visited the orders.
    """
    __tablename__ = "payment_allocations"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "position", name="uq_payment_allocations_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    amount_applied = db.Column(Money, nullable=False)

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "amount_applied": money_str(self.amount_applied),
        }

