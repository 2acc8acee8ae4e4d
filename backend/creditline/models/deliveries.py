from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z
from .types import DeliveryStatus, Money, enum_column_type


class Delivery(db.Model):
    """
    One attempt to bring one order to its customer.

    WHY: The deliverer collects against the customer's whole standing debt,
    not only the order being dropped off. `total_to_collect` is snapshotted
    when the delivery is assigned (order amount due + prior debt) and is what
    the daily cash register expects the deliverer to bring back.

    RE-DELIVERY: A failed delivery is terminal. A new attempt is a new row
    pointing back through `previous_delivery_id`.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        db.Index("ix_deliveries_deliverer_date", "deliverer_id", "scheduled_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    deliverer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    status = db.Column(enum_column_type(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING, index=True)
    scheduled_date = db.Column(db.Date, nullable=True)

    total_to_collect = db.Column(Money, nullable=False, default=0)
    amount_collected = db.Column(Money, nullable=True)
    collection_mode = db.Column(db.String(32), nullable=True)
    proof_of_delivery = db.Column(db.JSON, nullable=True)

    failure_reason = db.Column(db.String(255), nullable=True)
    reschedule_date = db.Column(db.Date, nullable=True)
    previous_delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=True)

    register_id = db.Column(db.Integer, db.ForeignKey("daily_cash_registers.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    arrived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("deliveries", lazy=True, order_by="Delivery.id"))
    deliverer = db.relationship("User")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "deliverer_id": self.deliverer_id,
            "status": self.status.value,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "total_to_collect": money_str(self.total_to_collect),
            "amount_collected": money_str(self.amount_collected),
            "collection_mode": self.collection_mode,
            "proof_of_delivery": self.proof_of_delivery,
            "failure_reason": self.failure_reason,
            "reschedule_date": self.reschedule_date.isoformat() if self.reschedule_date else None,
            "previous_delivery_id": self.previous_delivery_id,
            "register_id": self.register_id,
            "created_at": to_utc_z(self.created_at),
            "assigned_at": to_utc_z(self.assigned_at),
            "picked_up_at": to_utc_z(self.picked_up_at),
            "arrived_at": to_utc_z(self.arrived_at),
            "completed_at": to_utc_z(self.completed_at),
            "failed_at": to_utc_z(self.failed_at),
            "version_id": self.version_id,
        }
