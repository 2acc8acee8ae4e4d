# Overview: Ledger primitives; the only code that writes customer debt and product stock.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from flask import current_app

from ..errors import ConflictError, CustomerNotFound, ProductNotFound
from ..extensions import db
from ..models import (
    Customer,
    CustomerLedgerEntry,
    LedgerEntryType,
    Product,
    StockMovement,
    StockMovementType,
)
from ..money import ZERO, to_money
from ..time_utils import utcnow
from ..validation import parse_quantity
from .concurrency import begin_write, lock_for_update, run_with_retry

"""
Ledger invariants (authoritative)

- customers.current_debt and products.current_stock are written here and
  nowhere else.
- Every write appends its audit row (CustomerLedgerEntry / StockMovement)
  in the same transaction; replaying the audit rows reproduces the column.
- A check that fails raises before any write, and the caller's transaction
  is rolled back as a whole.
- These functions never commit. They run inside the caller's transaction,
  which must already hold the row lock order customer -> products.
"""


class CreditLimitExceeded(ConflictError):
    code = "CREDIT_LIMIT_EXCEEDED"


class InsufficientStock(ConflictError):
    code = "INSUFFICIENT_STOCK"


class DebtUnderflow(ConflictError):
    code = "DEBT_UNDERFLOW"


# =============================================================================
# STOCK
# =============================================================================

def check_stock(product: Product, quantity: int) -> None:
    """Raise InsufficientStock naming the product if `quantity` is not on hand."""
    if product.current_stock < quantity:
        raise InsufficientStock(
            f"Insufficient stock for {product.name} ({product.sku}): "
            f"available {product.current_stock}, requested {quantity}",
            details={
                "product_id": product.id,
                "sku": product.sku,
                "available": product.current_stock,
                "requested": quantity,
                "shortfall": quantity - product.current_stock,
            },
        )


def adjust_stock(
    product_id: int,
    delta: int,
    *,
    movement_type: StockMovementType,
    order_id: int | None = None,
    actor_user_id: int | None = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> int:
    """
    Apply a signed stock delta and append a StockMovement.

    Returns the new stock. Raises InsufficientStock when the result would
    be negative.
    """
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if not product:
        raise ProductNotFound(product_id)

    if delta < 0:
        check_stock(product, -delta)

    product.current_stock = product.current_stock + delta
    db.session.add(StockMovement(
        org_id=product.org_id,
        product_id=product.id,
        movement_type=movement_type,
        quantity_delta=delta,
        stock_after=product.current_stock,
        order_id=order_id,
        actor_user_id=actor_user_id,
        note=note,
        occurred_at=occurred_at or utcnow(),
    ))
    db.session.flush()
    return product.current_stock


# =============================================================================
# DEBT
# =============================================================================

def check_credit(customer: Customer, amount: Decimal) -> None:
    """
    Raise CreditLimitExceeded unless `amount` fits in the customer's credit.

    Exactly reaching the limit is allowed.
    """
    if not customer.credit_limit_enabled or customer.credit_limit is None:
        return
    if customer.current_debt + amount > customer.credit_limit:
        available = customer.credit_limit - customer.current_debt
        raise CreditLimitExceeded(
            f"Credit limit exceeded: available credit {available}, requested {amount}",
            details={
                "customer_id": customer.id,
                "credit_limit": customer.credit_limit,
                "current_debt": customer.current_debt,
                "available_credit": available,
                "requested": amount,
                "shortfall": amount - available,
            },
        )


def adjust_debt(
    customer_id: int,
    delta,
    *,
    entry_type: LedgerEntryType,
    reversal: bool = False,
    order_id: int | None = None,
    payment_id: int | None = None,
    actor_user_id: int | None = None,
    reference: Optional[str] = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> Decimal:
    """
    Apply a signed debt delta and append a CustomerLedgerEntry.

    RULES:
    - delta > 0 and not a reversal: credit limit enforced
    - reversals skip the credit check; they correct debt booked by an
      operation that was valid when it ran
    - the resulting debt may never go below zero (DebtUnderflow)

    Returns the new debt.
    """
    delta = to_money(delta)
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise CustomerNotFound(customer_id)

    if delta > ZERO and not reversal:
        check_credit(customer, delta)

    new_debt = customer.current_debt + delta
    if new_debt < ZERO:
        raise DebtUnderflow(
            f"Debt adjustment of {delta} would leave customer {customer.id} with negative debt",
            details={"customer_id": customer.id, "current_debt": customer.current_debt, "delta": delta},
        )

    customer.current_debt = new_debt
    db.session.add(CustomerLedgerEntry(
        org_id=customer.org_id,
        customer_id=customer.id,
        entry_type=entry_type,
        delta=delta,
        balance_after=new_debt,
        is_reversal=reversal,
        order_id=order_id,
        payment_id=payment_id,
        actor_user_id=actor_user_id,
        reference=reference,
        note=note,
        occurred_at=occurred_at or utcnow(),
    ))
    db.session.flush()
    return new_debt


# =============================================================================
# STOCK RECEIPT
# =============================================================================

def receive_stock(product_id: int, quantity, *, actor_user_id: int | None = None, note: Optional[str] = None) -> Product:
    """Put received goods on hand (positive stock movement) and commit."""
    quantity = parse_quantity(quantity)

    def _op():
        begin_write()
        adjust_stock(
            product_id,
            quantity,
            movement_type=StockMovementType.RECEIPT,
            actor_user_id=actor_user_id,
            note=note,
        )
        db.session.commit()
        return db.session.get(Product, product_id)

    product = run_with_retry(_op)
    current_app.logger.info("Received %s units of product %s", quantity, product_id)
    return product
