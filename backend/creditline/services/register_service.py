"""
Daily Cash Register Service

WHY: Each deliverer owes the organization exactly what they collected.
One register per deliverer per business day accumulates expected and
actual collections; closing it records the cash handed over and the
discrepancy.

DESIGN PRINCIPLES:
- One register per (deliverer, business date), created lazily
- Closing is terminal; nothing posts to a closed register
- Corrections after close are CashRegisterAdjustment rows, never edits
- discrepancy = cash_handed_over - actual_collection
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, RegisterNotFound, UserNotFound, ValidationError
from ..extensions import db
from ..models import CashRegisterAdjustment, DailyCashRegister, User
from ..money import ZERO
from ..time_utils import utcnow
from ..validation import parse_amount, parse_signed_amount
from . import notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .sequence_service import org_business_date


class RegisterClosed(ConflictError):
    code = "REGISTER_CLOSED"


class RegisterNotClosed(ConflictError):
    code = "REGISTER_NOT_CLOSED"


def _ensure_open(register: DailyCashRegister) -> None:
    if register.is_closed:
        raise RegisterClosed(
            f"Cash register {register.id} for {register.business_date} is closed",
            details={
                "register_id": register.id,
                "deliverer_id": register.deliverer_id,
                "business_date": register.business_date.isoformat(),
            },
        )


# =============================================================================
# REGISTER ACCESS
# =============================================================================

def get_or_create_register_locked(org_id: int, deliverer_id: int, business_date: date) -> DailyCashRegister:
    """
    Lock (or create) the register for a deliverer/day inside the caller's
    transaction. Registers are the last lock in the global order.
    """
    query = db.session.query(DailyCashRegister).filter_by(
        deliverer_id=deliverer_id,
        business_date=business_date,
    )
    register = lock_for_update(query).first()
    if register:
        return register

    register = DailyCashRegister(
        org_id=org_id,
        deliverer_id=deliverer_id,
        business_date=business_date,
        expected_collection=ZERO,
        actual_collection=ZERO,
        new_debt_created=ZERO,
        cash_collected=ZERO,
        check_collected=ZERO,
        other_collected=ZERO,
    )
    try:
        with db.session.begin_nested():
            db.session.add(register)
    except IntegrityError:
        # Created by a concurrent settlement for the same deliverer/day
        register = lock_for_update(query).first()
        if register is None:
            raise
    return register


def get_or_create_register(org_id: int, deliverer_id: int, business_date: Optional[date] = None) -> DailyCashRegister:
    """Register for a deliverer/day (today in the organization's timezone by default)."""
    deliverer = db.session.get(User, deliverer_id)
    if not deliverer or deliverer.org_id != org_id:
        raise UserNotFound(deliverer_id)

    def _op():
        day = business_date or org_business_date(org_id)
        begin_write()
        register = get_or_create_register_locked(org_id, deliverer_id, day)
        db.session.commit()
        return register

    return run_with_retry(_op)


def post_collection(
    register: DailyCashRegister,
    *,
    expected: Decimal = ZERO,
    collected: Decimal = ZERO,
    mode: Optional[str] = None,
    new_debt: Decimal = ZERO,
    completed: int = 0,
    failed: int = 0,
) -> DailyCashRegister:
    """
    Add settlement effects to an open register (no commit).

    Raises RegisterClosed when the register was already closed.
    """
    _ensure_open(register)

    register.expected_collection = register.expected_collection + expected
    register.actual_collection = register.actual_collection + collected
    register.new_debt_created = register.new_debt_created + new_debt

    if collected > ZERO:
        if mode == "cash":
            register.cash_collected = register.cash_collected + collected
        elif mode == "check":
            register.check_collected = register.check_collected + collected
        else:
            register.other_collected = register.other_collected + collected

    register.deliveries_completed = register.deliveries_completed + completed
    register.deliveries_failed = register.deliveries_failed + failed
    db.session.flush()
    return register


# =============================================================================
# CLOSE
# =============================================================================

def close_daily_cash(
    register_id: int,
    cash_handed_over,
    notes: Optional[str] = None,
    closed_by_user_id: int | None = None,
) -> DailyCashRegister:
    """
    Close a register with the cash the deliverer handed over.

    discrepancy = cash_handed_over - actual_collection (negative = short).
    Closing is terminal: a second close raises RegisterClosed.
    """
    cash_handed_over = parse_amount(cash_handed_over, "cash_handed_over", allow_zero=True)

    def _op():
        begin_write()
        register = lock_for_update(db.session.query(DailyCashRegister).filter_by(id=register_id)).first()
        if not register:
            raise RegisterNotFound(register_id)
        _ensure_open(register)

        register.cash_handed_over = cash_handed_over
        register.discrepancy = cash_handed_over - register.actual_collection
        register.is_closed = True
        register.closed_by_user_id = closed_by_user_id
        register.closed_at = utcnow()
        register.notes = notes

        db.session.commit()
        return register

    register = run_with_retry(_op)
    current_app.logger.info(
        "Register %s closed: collected %s, handed over %s, discrepancy %s",
        register.id, register.actual_collection, register.cash_handed_over, register.discrepancy,
    )
    notification_service.notify(notification_service.REGISTER_CLOSED, register.to_dict())
    return register


# =============================================================================
# ADJUSTMENTS
# =============================================================================

def add_register_adjustment(
    register_id: int,
    amount,
    reason: str,
    actor_user_id: int | None = None,
) -> CashRegisterAdjustment:
    """
    Post a correction against a closed register.

    The register row stays untouched; get_register_summary folds the
    adjustments into the adjusted discrepancy.
    """
    amount = parse_signed_amount(amount)
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("Adjustment reason is required", details={"field": "reason"})

    def _op():
        begin_write()
        register = lock_for_update(db.session.query(DailyCashRegister).filter_by(id=register_id)).first()
        if not register:
            raise RegisterNotFound(register_id)
        if not register.is_closed:
            raise RegisterNotClosed(
                f"Cash register {register.id} is still open; adjustments apply to closed registers only",
                details={"register_id": register.id},
            )

        adjustment = CashRegisterAdjustment(
            register_id=register.id,
            amount=amount,
            reason=reason.strip()[:255],
            actor_user_id=actor_user_id,
        )
        db.session.add(adjustment)
        db.session.commit()
        return adjustment

    adjustment = run_with_retry(_op)
    current_app.logger.info("Adjustment of %s posted on register %s", amount, register_id)
    return adjustment


# =============================================================================
# READ
# =============================================================================

def get_register(register_id: int, org_id: int | None = None) -> DailyCashRegister:
    register = db.session.get(DailyCashRegister, register_id)
    if not register or (org_id is not None and register.org_id != org_id):
        raise RegisterNotFound(register_id)
    return register


def get_register_summary(register_id: int) -> dict:
    register = get_register(register_id)
    adjustments_total = sum((a.amount for a in register.adjustments), ZERO)
    adjusted = None
    if register.discrepancy is not None:
        adjusted = register.discrepancy + adjustments_total
    return {
        "register": register.to_dict(),
        "adjustments": [a.to_dict() for a in register.adjustments],
        "adjustments_total": str(adjustments_total),
        "adjusted_discrepancy": str(adjusted) if adjusted is not None else None,
    }


def list_registers(
    org_id: int,
    *,
    business_date: Optional[date] = None,
    deliverer_id: int | None = None,
    is_closed: Optional[bool] = None,
) -> list[DailyCashRegister]:
    query = db.session.query(DailyCashRegister).filter(DailyCashRegister.org_id == org_id)
    if business_date is not None:
        query = query.filter(DailyCashRegister.business_date == business_date)
    if deliverer_id is not None:
        query = query.filter(DailyCashRegister.deliverer_id == deliverer_id)
    if is_closed is not None:
        query = query.filter(DailyCashRegister.is_closed.is_(is_closed))
    return query.order_by(DailyCashRegister.business_date.desc(), DailyCashRegister.id.asc()).all()
