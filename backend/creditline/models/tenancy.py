from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .types import UserRole, enum_column_type


class Organization(db.Model):
    """
    Tenant root. Every customer, product, order and register belongs to one.

    `timezone` drives business dates: order numbers, daily registers and
    aging buckets count calendar days in this zone.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True)
    timezone = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "timezone": self.timezone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Staff member acting on the engine: admins, managers and deliverers.

    Identity and sessions are issued elsewhere; the engine only needs the
    id, the role and whether the account is active.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_org_role", "org_id", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(enum_column_type(UserRole), nullable=False, default=UserRole.DELIVERER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "role": self.role.value,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
