# Overview: Pytest coverage for ledger invariants under random and concurrent operations.

"""
Ledger Invariant Tests

1. Drift injected behind the ledger's back is reported by the audit
2. After a random sequence of orders, payments, cancellations and refunds,
   every customer's debt and every product's stock replay from the audit trail
3. Two threads racing for the last unit: exactly one order wins
4. Two threads racing for the last credit: exactly one order wins
"""

import random
import threading
from decimal import Decimal

from sqlalchemy import update

from creditline.errors import ConflictError
from creditline.extensions import db
from creditline.models import Customer, Order, OrderStatus, Product
from creditline.services import audit_service, order_service, payment_service
from creditline.services.ledger_service import CreditLimitExceeded, InsufficientStock


class TestAudit:
    def test_clean_books_have_no_issues(self, db_session, org, customer, product, place_order):
        place_order(customer, [(product, 1)])
        assert audit_service.verify_organization(org.id) == []

    def test_drift_is_reported(self, db_session, org, customer, product, place_order):
        place_order(customer, [(product, 1)])
        db_session.execute(
            update(Customer.__table__).where(Customer.__table__.c.id == customer.id).values(current_debt=123)
        )
        db_session.execute(
            update(Product.__table__).where(Product.__table__.c.id == product.id).values(current_stock=99)
        )
        db_session.commit()
        db_session.expire_all()

        checks = {issue["check"] for issue in audit_service.verify_organization(org.id)}

        assert {"debt_vs_ledger_sum", "debt_vs_last_balance", "debt_vs_amount_due", "stock_vs_movements"} <= checks


class TestRandomReplay:
    def test_invariants_hold_after_random_operations(self, db_session, org, make_customer, make_product):
        rng = random.Random(20260301)
        customers = [make_customer(limit, name=f"Customer {i}") for i, limit in enumerate(["500.00", "250.00", None])]
        products = [make_product(price, stock) for price, stock in [("12.50", 30), ("40.00", 10), ("3.99", 100)]]
        customer_ids = [c.id for c in customers]
        product_ids = [p.id for p in products]

        for _ in range(120):
            action = rng.choice(["order", "order", "pay", "cancel", "refund"])
            customer_id = rng.choice(customer_ids)
            try:
                if action == "order":
                    lines = rng.sample(product_ids, rng.randint(1, 2))
                    items = [{"product_id": pid, "quantity": rng.randint(1, 4)} for pid in lines]
                    order_service.create_order(customer_id, org.id, items)
                elif action == "pay":
                    debt = db_session.get(Customer, customer_id).current_debt
                    if debt > 0:
                        cents = rng.randint(1, int(debt * 100))
                        payment_service.record_payment(customer_id, Decimal(cents) / 100, "cash")
                elif action == "cancel":
                    open_orders = order_service.list_customer_orders(customer_id, status=OrderStatus.PENDING)
                    if open_orders:
                        order_service.cancel_order(rng.choice(open_orders).id, "Random cancel")
                else:
                    refundable = (
                        db_session.query(Order)
                        .filter(Order.status == OrderStatus.CANCELLED, Order.amount_paid > 0)
                        .all()
                    )
                    if refundable:
                        target = rng.choice(refundable)
                        payment_service.refund_payment(target.id, target.amount_paid, "cash")
            except ConflictError:
                # Credit, stock and overpayment refusals are part of the game
                pass

        assert audit_service.verify_organization(org.id) == []
        for product_id in product_ids:
            assert db_session.get(Product, product_id).current_stock >= 0


def _race(app, work, count=2):
    """Run `work(index)` in `count` threads released together; collect outcomes."""
    barrier = threading.Barrier(count)
    outcomes = [None] * count

    def runner(index):
        with app.app_context():
            try:
                barrier.wait()
                outcomes[index] = work(index)
            except Exception as exc:
                outcomes[index] = exc
            finally:
                db.session.remove()

    threads = [threading.Thread(target=runner, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


class TestConcurrency:
    def test_last_unit_goes_to_exactly_one_order(self, app, db_session, org, make_customer, make_product):
        product_id = make_product("1.00", 1).id
        customer_ids = [make_customer(None, name=f"Racer {i}").id for i in range(2)]
        org_id = org.id
        db_session.remove()

        outcomes = _race(
            app,
            lambda i: order_service.create_order(customer_ids[i], org_id, [{"product_id": product_id, "quantity": 1}]).id,
        )

        winners = [o for o in outcomes if isinstance(o, int)]
        losers = [o for o in outcomes if isinstance(o, InsufficientStock)]
        assert len(winners) == 1, outcomes
        assert len(losers) == 1, outcomes
        assert db.session.get(Product, product_id).current_stock == 0
        assert audit_service.verify_organization(org_id) == []

    def test_credit_is_never_oversold(self, app, db_session, org, make_customer, make_product):
        product_id = make_product("6000.00", 10).id
        customer_id = make_customer("10000.00").id
        org_id = org.id
        db_session.remove()

        outcomes = _race(
            app,
            lambda i: order_service.create_order(customer_id, org_id, [{"product_id": product_id, "quantity": 1}]).id,
        )

        assert sum(isinstance(o, int) for o in outcomes) == 1, outcomes
        assert sum(isinstance(o, CreditLimitExceeded) for o in outcomes) == 1, outcomes
        assert db.session.get(Customer, customer_id).current_debt == Decimal("6000.00")
        assert db.session.get(Product, product_id).current_stock == 9
