from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z
from .types import Money


class DailyCashRegister(db.Model):
    """
    What one deliverer owes the organization for one business day.

    WHY: Cash accountability. Every completed delivery adds what should have
    been collected (`expected_collection`) and what was recorded as collected
    (`actual_collection`). At the end of the day the deliverer hands the cash
    over and the difference is the discrepancy.

    LIFECYCLE:
    - OPEN: created lazily on the first settlement of the day
    - CLOSED: cash counted, discrepancy computed

    IMMUTABLE: Once closed, the register is never reopened or edited.
    Corrections are CashRegisterAdjustment rows.
    """
    __tablename__ = "daily_cash_registers"
    __table_args__ = (
        db.UniqueConstraint("deliverer_id", "business_date", name="uq_registers_deliverer_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    deliverer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False, index=True)

    expected_collection = db.Column(Money, nullable=False, default=0)
    actual_collection = db.Column(Money, nullable=False, default=0)
    new_debt_created = db.Column(Money, nullable=False, default=0)

    # Breakdown of actual_collection by payment mode
    cash_collected = db.Column(Money, nullable=False, default=0)
    check_collected = db.Column(Money, nullable=False, default=0)
    other_collected = db.Column(Money, nullable=False, default=0)

    deliveries_completed = db.Column(db.Integer, nullable=False, default=0)
    deliveries_failed = db.Column(db.Integer, nullable=False, default=0)

    is_closed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    cash_handed_over = db.Column(Money, nullable=True)
    discrepancy = db.Column(Money, nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    deliverer = db.relationship("User", foreign_keys=[deliverer_id])
    adjustments = db.relationship(
        "CashRegisterAdjustment",
        backref="register",
        lazy=True,
        order_by="CashRegisterAdjustment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "deliverer_id": self.deliverer_id,
            "business_date": self.business_date.isoformat(),
            "expected_collection": money_str(self.expected_collection),
            "actual_collection": money_str(self.actual_collection),
            "new_debt_created": money_str(self.new_debt_created),
            "cash_collected": money_str(self.cash_collected),
            "check_collected": money_str(self.check_collected),
            "other_collected": money_str(self.other_collected),
            "deliveries_completed": self.deliveries_completed,
            "deliveries_failed": self.deliveries_failed,
            "is_closed": self.is_closed,
            "cash_handed_over": money_str(self.cash_handed_over),
            "discrepancy": money_str(self.discrepancy),
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CashRegisterAdjustment(db.Model):
    """
    Correction posted against a closed register.

    `amount` is signed: positive when the deliverer later hands over more
    cash, negative for a write-off.
    """
    __tablename__ = "cash_register_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.Integer, db.ForeignKey("daily_cash_registers.id"), nullable=False, index=True)
    amount = db.Column(Money, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_id": self.register_id,
            "amount": money_str(self.amount),
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }
