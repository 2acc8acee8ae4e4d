# Overview: Per-organization, per-day document numbers (ORD-YYYYMMDD-NNNN).

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from flask import current_app
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DailySequence, Organization
from ..time_utils import business_date
from .concurrency import run_with_retry

ORDER_SEQUENCE = "order"
RECEIPT_SEQUENCE = "receipt"


def org_timezone(org_id: int) -> str:
    """Organization timezone, falling back to BUSINESS_TIMEZONE."""
    tz_name = db.session.query(Organization.timezone).filter_by(id=org_id).scalar()
    return tz_name or current_app.config.get("BUSINESS_TIMEZONE", "UTC")


def org_business_date(org_id: int, at: Optional[datetime] = None) -> date:
    return business_date(org_timezone(org_id), at)


def _bump(conn, org_id: int, sequence_type: str, day: date) -> int | None:
    table = DailySequence.__table__
    where = (
        (table.c.org_id == org_id)
        & (table.c.sequence_type == sequence_type)
        & (table.c.business_date == day)
    )
    result = conn.execute(update(table).where(where).values(next_number=table.c.next_number + 1))
    if not result.rowcount:
        return None
    current = conn.execute(select(table.c.next_number).where(where)).scalar_one()
    return current - 1


def next_daily_number(
    *,
    org_id: int,
    sequence_type: str,
    prefix: str,
    day: date,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next number for (org, sequence type, day).

    Runs on its own connection and commits immediately, so the counter row
    lock is held only for the bump itself and never joins the caller's
    debt/stock transaction. Call it BEFORE begin_write(): on SQLite the
    caller's write lock would otherwise block this connection.

    Gap-tolerant: numbers are not returned when the caller rolls back.
    """
    table = DailySequence.__table__

    def _op() -> int:
        with db.engine.begin() as conn:
            number = _bump(conn, org_id, sequence_type, day)
        if number is not None:
            return number

        try:
            with db.engine.begin() as conn:
                conn.execute(insert(table).values(
                    org_id=org_id,
                    sequence_type=sequence_type,
                    business_date=day,
                    next_number=2,
                ))
            return 1
        except IntegrityError:
            # Another request created the row first
            with db.engine.begin() as conn:
                number = _bump(conn, org_id, sequence_type, day)
            if number is None:
                raise
            return number

    number = run_with_retry(_op)
    return f"{prefix}-{day:%Y%m%d}-{number:0{pad}d}"


def next_order_number(org_id: int, at: Optional[datetime] = None) -> str:
    return next_daily_number(
        org_id=org_id,
        sequence_type=ORDER_SEQUENCE,
        prefix=current_app.config.get("ORDER_NUMBER_PREFIX", "ORD"),
        day=org_business_date(org_id, at),
    )


def next_receipt_number(org_id: int, at: Optional[datetime] = None) -> str:
    return next_daily_number(
        org_id=org_id,
        sequence_type=RECEIPT_SEQUENCE,
        prefix=current_app.config.get("RECEIPT_NUMBER_PREFIX", "REC"),
        day=org_business_date(org_id, at),
    )
