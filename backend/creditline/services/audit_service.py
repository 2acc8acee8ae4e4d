# Overview: Recompute ledger invariants from the audit trail and report drift.

"""
Checks (each returns a list of discrepancy dicts; empty means consistent):

CUSTOMER
- current_debt == last ledger entry balance == sum of ledger deltas
- current_debt == sum of amount_due over non-cancelled orders
- current_debt >= 0

ORDER
- amount_paid == sum of its payment allocations
- 0 <= amount_paid <= total
- total == sum of line totals

PRODUCT
- current_stock == sum of stock movement deltas
- current_stock >= 0
"""

from __future__ import annotations

from ..errors import CustomerNotFound, ProductNotFound
from ..extensions import db
from ..models import (
    Customer,
    CustomerLedgerEntry,
    Order,
    OrderStatus,
    PaymentAllocation,
    Product,
    StockMovement,
)
from ..money import ZERO


def _issue(kind: str, entity: str, entity_id: int, expected, actual) -> dict:
    return {
        "check": kind,
        "entity": entity,
        "id": entity_id,
        "expected": str(expected),
        "actual": str(actual),
    }


def verify_order(order: Order) -> list[dict]:
    issues = []
    allocated = sum(
        (a.amount_applied for a in db.session.query(PaymentAllocation).filter_by(order_id=order.id)),
        ZERO,
    )
    if allocated != order.amount_paid:
        issues.append(_issue("amount_paid_vs_allocations", "order", order.id, allocated, order.amount_paid))
    if order.amount_paid < ZERO or order.amount_paid > order.total:
        issues.append(_issue("amount_paid_within_total", "order", order.id, f"0..{order.total}", order.amount_paid))
    line_sum = sum((item.line_total for item in order.items), ZERO)
    if line_sum != order.total:
        issues.append(_issue("total_vs_lines", "order", order.id, line_sum, order.total))
    return issues


def verify_customer(customer_id: int) -> list[dict]:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise CustomerNotFound(customer_id)

    issues = []
    entries = (
        db.session.query(CustomerLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerLedgerEntry.id.asc())
        .all()
    )
    replayed = sum((e.delta for e in entries), ZERO)
    if replayed != customer.current_debt:
        issues.append(_issue("debt_vs_ledger_sum", "customer", customer.id, replayed, customer.current_debt))
    if entries and entries[-1].balance_after != customer.current_debt:
        issues.append(_issue(
            "debt_vs_last_balance", "customer", customer.id, entries[-1].balance_after, customer.current_debt
        ))

    orders = db.session.query(Order).filter_by(customer_id=customer_id).all()
    outstanding = sum((o.amount_due for o in orders if o.status != OrderStatus.CANCELLED), ZERO)
    if outstanding != customer.current_debt:
        issues.append(_issue("debt_vs_amount_due", "customer", customer.id, outstanding, customer.current_debt))
    if customer.current_debt < ZERO:
        issues.append(_issue("debt_nonnegative", "customer", customer.id, ">= 0", customer.current_debt))

    for order in orders:
        issues.extend(verify_order(order))
    return issues


def verify_product(product_id: int) -> list[dict]:
    product = db.session.get(Product, product_id)
    if not product:
        raise ProductNotFound(product_id)

    issues = []
    moved = sum(
        (m.quantity_delta for m in db.session.query(StockMovement).filter_by(product_id=product_id)),
        0,
    )
    if moved != product.current_stock:
        issues.append(_issue("stock_vs_movements", "product", product.id, moved, product.current_stock))
    if product.current_stock < 0:
        issues.append(_issue("stock_nonnegative", "product", product.id, ">= 0", product.current_stock))
    return issues


def verify_organization(org_id: int) -> list[dict]:
    issues = []
    customer_ids = [cid for (cid,) in db.session.query(Customer.id).filter_by(org_id=org_id).order_by(Customer.id)]
    for customer_id in customer_ids:
        issues.extend(verify_customer(customer_id))
    product_ids = [pid for (pid,) in db.session.query(Product.id).filter_by(org_id=org_id).order_by(Product.id)]
    for product_id in product_ids:
        issues.extend(verify_product(product_id))
    return issues
