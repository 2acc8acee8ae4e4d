from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z
from .types import LedgerEntryType, Money, enum_column_type


class Customer(db.Model):
    """
    Customer buying on a revolving credit line.

    DEBT: `current_debt` is only ever written by ledger_service.adjust_debt,
    which appends a CustomerLedgerEntry in the same transaction. Never set it
    directly.

    CREDIT: `credit_limit` NULL means unlimited; the limit is only enforced
    when `credit_limit_enabled` is true.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("current_debt >= 0", name="ck_customers_debt_nonneg"),
        db.Index("ix_customers_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    credit_limit = db.Column(Money, nullable=True)
    credit_limit_enabled = db.Column(db.Boolean, nullable=False, default=True)
    current_debt = db.Column(Money, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    last_order_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_payment_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def available_credit(self):
        """None when the customer has no effective limit."""
        if not self.credit_limit_enabled or self.credit_limit is None:
            return None
        return self.credit_limit - self.current_debt

    def to_dict(self) -> dict:
        available = self.available_credit()
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "credit_limit": money_str(self.credit_limit),
            "credit_limit_enabled": self.credit_limit_enabled,
            "current_debt": money_str(self.current_debt),
            "available_credit": money_str(available),
            "is_active": self.is_active,
            "last_order_at": to_utc_z(self.last_order_at),
            "last_payment_at": to_utc_z(self.last_payment_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerLedgerEntry(db.Model):
    """
    Append-only debt ledger: one row per adjust_debt call.

    `delta` is signed (+ booked order, - payment or cancellation reversal),
    `balance_after` is the customer's debt right after the entry. Replaying
    the deltas in id order reproduces `customers.current_debt`.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "customer_ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_entries_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    entry_type = db.Column(enum_column_type(LedgerEntryType), nullable=False, index=True)
    delta = db.Column(Money, nullable=False)
    balance_after = db.Column(Money, nullable=False)
    is_reversal = db.Column(db.Boolean, nullable=False, default=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    reference = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "entry_type": self.entry_type.value,
            "delta": money_str(self.delta),
            "balance_after": money_str(self.balance_after),
            "is_reversal": self.is_reversal,
            "order_id": self.order_id,
            "payment_id": self.payment_id,
            "actor_user_id": self.actor_user_id,
            "reference": self.reference,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
