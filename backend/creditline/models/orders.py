from __future__ import annotations

from ..extensions import db
from ..money import ZERO, money_str
from ..time_utils import to_utc_z
from .types import Money, OrderStatus, enum_column_type


class Order(db.Model):
    """
    Customer order booked against the credit line.

    TOTALS:
    - `total` is the sum of line totals, fixed at creation
    - `amount_paid` only grows through payment allocations, and only shrinks
      through a refund on a cancelled order
    - `amount_due` and `payment_status` are derived on every read and are
      deliberately not columns

    Orders are never deleted; cancellation is a status.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "order_number", name="uq_orders_org_number"),
        db.CheckConstraint("amount_paid >= 0", name="ck_orders_paid_nonneg"),
        db.CheckConstraint("amount_paid <= total", name="ck_orders_paid_le_total"),
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    order_number = db.Column(db.String(64), nullable=False)
    status = db.Column(enum_column_type(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)

    total = db.Column(Money, nullable=False)
    amount_paid = db.Column(Money, nullable=False, default=0)

    business_date = db.Column(db.Date, nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def amount_due(self):
        if self.status == OrderStatus.CANCELLED:
            return ZERO
        return self.total - self.amount_paid

    @property
    def payment_status(self) -> str:
        if self.amount_paid == ZERO:
            return "unpaid"
        if self.amount_paid < self.total:
            return "partial"
        return "paid"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "order_number": self.order_number,
            "status": self.status.value,
            "payment_status": self.payment_status,
            "total": money_str(self.total),
            "amount_paid": money_str(self.amount_paid),
            "amount_due": money_str(self.amount_due),
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "notes": self.notes,
            "idempotency_key": self.idempotency_key,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line with a price snapshot.

    `unit_price` and `line_total` are copied from the product at creation;
    later price changes never touch existing orders.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(Money, nullable=False)
    line_total = db.Column(Money, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "line_total": money_str(self.line_total),
        }
