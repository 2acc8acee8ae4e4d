from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class DailySequence(db.Model):
    """
    Per-organization, per-day document counter.

    WHY: Order and receipt numbers read `PREFIX-YYYYMMDD-NNNN`. Each
    (org, sequence type, day) has its own row, bumped in its own short
    transaction, so numbering never serializes unrelated orders on the
    customer/product locks.

    Gap-tolerant: a number handed out to an operation that later rolls back
    is simply skipped.
    """
    __tablename__ = "daily_sequences"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sequence_type", "business_date", name="uq_daily_sequences_org_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sequence_type = db.Column(db.String(32), nullable=False)
    business_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sequence_type": self.sequence_type,
            "business_date": self.business_date.isoformat(),
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class IdempotencyKey(db.Model):
    """
    Client-supplied idempotency key and the entity it produced.

    `request_hash` fingerprints the request parameters: a replay with the
    same key and the same parameters returns `entity_id`; the same key with
    different parameters is refused. The row is written in the same
    transaction as the entity, so a key never points at rolled-back work.
    """
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        db.UniqueConstraint("org_id", "scope", "key", name="uq_idempotency_keys_org_scope_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    scope = db.Column(db.String(32), nullable=False)
    key = db.Column(db.String(128), nullable=False)
    request_hash = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "scope": self.scope,
            "key": self.key,
            "entity_id": self.entity_id,
            "created_at": to_utc_z(self.created_at),
        }
