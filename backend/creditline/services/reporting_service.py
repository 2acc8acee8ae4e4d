# Overview: Read-only projections over the ledger; customer statements and receivables aging.

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func

from ..errors import CustomerNotFound, ValidationError
from ..extensions import db
from ..models import Customer, CustomerLedgerEntry, Order, OrderStatus, Payment, PaymentAllocation
from ..money import ZERO, money_str, to_money
from ..time_utils import business_day_bounds
from .sequence_service import org_business_date, org_timezone

AGING_BUCKETS = (
    ("0-30", 0, 30),
    ("31-60", 31, 60),
    ("61-90", 61, 90),
    ("90+", 91, None),
)


def _bucket_for(age_days: int) -> str:
    for label, low, high in AGING_BUCKETS:
        if age_days >= low and (high is None or age_days <= high):
            return label
    # Orders dated after as_of (clock skew across timezones) count as current
    return AGING_BUCKETS[0][0]


# =============================================================================
# STATEMENT
# =============================================================================

def get_customer_statement(
    customer_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> dict:
    """
    Debt movements for a customer over a date range (inclusive, business days).

    Built from the append-only CustomerLedgerEntry trail:
    - opening_balance: balance after the last entry before the range
    - running_balance on every movement
    - closing_balance = opening + debits - credits
    """
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise CustomerNotFound(customer_id)
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date", details={"field": "start_date"})

    tz_name = org_timezone(customer.org_id)
    start_at = business_day_bounds(tz_name, start_date)[0] if start_date else None
    end_at = business_day_bounds(tz_name, end_date)[1] if end_date else None

    base = db.session.query(CustomerLedgerEntry).filter(CustomerLedgerEntry.customer_id == customer_id)

    opening = ZERO
    if start_at is not None:
        previous = (
            base.filter(CustomerLedgerEntry.occurred_at < start_at)
            .order_by(CustomerLedgerEntry.id.desc())
            .first()
        )
        if previous:
            opening = previous.balance_after

    query = base
    if start_at is not None:
        query = query.filter(CustomerLedgerEntry.occurred_at >= start_at)
    if end_at is not None:
        query = query.filter(CustomerLedgerEntry.occurred_at < end_at)
    entries = query.order_by(CustomerLedgerEntry.id.asc()).all()

    running = opening
    debits = ZERO
    credits = ZERO
    movements = []
    for entry in entries:
        running += entry.delta
        if entry.delta > ZERO:
            debits += entry.delta
        else:
            credits += -entry.delta
        row = entry.to_dict()
        row["running_balance"] = money_str(running)
        movements.append(row)

    return {
        "customer": customer.to_dict(),
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
        "opening_balance": money_str(opening),
        "total_debits": money_str(debits),
        "total_credits": money_str(credits),
        "closing_balance": money_str(running),
        "movements": movements,
    }


# =============================================================================
# AGING
# =============================================================================

def _paid_as_of(order_ids: list[int], cutoff) -> dict[int, Decimal]:
    """Sum of allocations per order from payments made before `cutoff`."""
    if not order_ids:
        return {}
    rows = (
        db.session.query(
            PaymentAllocation.order_id,
            func.coalesce(func.sum(PaymentAllocation.amount_applied), 0),
        )
        .join(Payment, Payment.id == PaymentAllocation.payment_id)
        .filter(
            PaymentAllocation.order_id.in_(order_ids),
            Payment.created_at < cutoff,
        )
        .group_by(PaymentAllocation.order_id)
        .all()
    )
    return {order_id: to_money(amount) for order_id, amount in rows}


def get_aging_report(org_id: int, as_of: Optional[date] = None) -> dict:
    """
    Receivables aging per customer as of the end of `as_of` (business day).

    Each order's amount due is reconstructed at `as_of` from the payments
    allocated before then, and aged by its business date:
    0-30, 31-60, 61-90 and 90+ days. Orders cancelled by `as_of` are left out.
    """
    as_of = as_of or org_business_date(org_id)
    cutoff = business_day_bounds(org_timezone(org_id), as_of)[1]

    orders = (
        db.session.query(Order)
        .filter(Order.org_id == org_id, Order.created_at < cutoff)
        .order_by(Order.customer_id.asc(), Order.id.asc())
        .all()
    )
    orders = [
        o for o in orders
        if not (o.status == OrderStatus.CANCELLED and o.cancelled_at is not None and o.cancelled_at < cutoff)
    ]
    paid = _paid_as_of([o.id for o in orders], cutoff)

    labels = [label for label, _, _ in AGING_BUCKETS]
    per_customer: dict[int, dict[str, Decimal]] = {}
    for order in orders:
        due = order.total - paid.get(order.id, ZERO)
        if due <= ZERO:
            continue
        bucket = _bucket_for((as_of - order.business_date).days)
        totals = per_customer.setdefault(order.customer_id, {label: ZERO for label in labels})
        totals[bucket] += due

    customers = {}
    if per_customer:
        customers = {
            c.id: c
            for c in db.session.query(Customer).filter(Customer.id.in_(list(per_customer))).all()
        }

    grand = {label: ZERO for label in labels}
    rows = []
    for customer_id in sorted(per_customer):
        buckets = per_customer[customer_id]
        for label in labels:
            grand[label] += buckets[label]
        rows.append({
            "customer_id": customer_id,
            "customer_name": customers[customer_id].name,
            "buckets": {label: money_str(buckets[label]) for label in labels},
            "total": money_str(sum(buckets.values(), ZERO)),
        })

    return {
        "org_id": org_id,
        "as_of": as_of.isoformat(),
        "bucket_labels": labels,
        "customers": rows,
        "totals": {label: money_str(grand[label]) for label in labels},
        "total": money_str(sum(grand.values(), ZERO)),
    }
