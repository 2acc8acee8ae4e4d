# Overview: Pytest coverage for the debt and stock ledger primitives.

from decimal import Decimal

import pytest

from creditline.errors import CustomerNotFound, ProductNotFound, ValidationError
from creditline.extensions import db
from creditline.models import (
    Customer,
    CustomerLedgerEntry,
    LedgerEntryType,
    Product,
    StockMovement,
    StockMovementType,
)
from creditline.services import ledger_service
from creditline.services.ledger_service import CreditLimitExceeded, DebtUnderflow, InsufficientStock


class TestCheckCredit:
    def test_exactly_reaching_limit_is_allowed(self, make_customer):
        customer = make_customer("100.00")
        ledger_service.check_credit(customer, Decimal("100.00"))

    def test_one_cent_over_limit_reports_available_credit(self, make_customer):
        customer = make_customer("100.00")
        with pytest.raises(CreditLimitExceeded) as exc:
            ledger_service.check_credit(customer, Decimal("100.01"))
        assert exc.value.details["available_credit"] == Decimal("100.00")
        assert exc.value.details["shortfall"] == Decimal("0.01")

    def test_disabled_limit_is_not_enforced(self, make_customer):
        customer = make_customer(None)
        ledger_service.check_credit(customer, Decimal("999999.99"))


class TestAdjustDebt:
    def test_appends_ledger_entry_with_balance(self, db_session, customer):
        new_debt = ledger_service.adjust_debt(customer.id, "250.00", entry_type=LedgerEntryType.ORDER_CREATED)
        db_session.commit()

        assert new_debt == Decimal("250.00")
        entry = db_session.query(CustomerLedgerEntry).filter_by(customer_id=customer.id).one()
        assert entry.delta == Decimal("250.00")
        assert entry.balance_after == Decimal("250.00")
        assert entry.is_reversal is False

    def test_credit_limit_blocks_positive_delta(self, db_session, make_customer):
        customer = make_customer("100.00")
        with pytest.raises(CreditLimitExceeded):
            ledger_service.adjust_debt(customer.id, "100.01", entry_type=LedgerEntryType.ORDER_CREATED)
        db_session.rollback()
        assert db_session.get(Customer, customer.id).current_debt == Decimal("0.00")
        assert db_session.query(CustomerLedgerEntry).count() == 0

    def test_reversal_skips_credit_check_but_not_underflow(self, db_session, customer):
        ledger_service.adjust_debt(customer.id, "50.00", entry_type=LedgerEntryType.ORDER_CREATED)
        with pytest.raises(DebtUnderflow):
            ledger_service.adjust_debt(
                customer.id, "-50.01", entry_type=LedgerEntryType.ORDER_CANCELLED, reversal=True
            )
        db_session.rollback()

    def test_unknown_customer(self, db_session):
        with pytest.raises(CustomerNotFound):
            ledger_service.adjust_debt(424242, "1.00", entry_type=LedgerEntryType.ORDER_CREATED)


class TestStock:
    def test_receive_stock_records_movement(self, db_session, make_product):
        product = make_product("10.00", 0)
        ledger_service.receive_stock(product.id, 7, note="Initial load")

        assert db_session.get(Product, product.id).current_stock == 7
        movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()
        assert movement.movement_type == StockMovementType.RECEIPT
        assert movement.quantity_delta == 7
        assert movement.stock_after == 7

    def test_receive_stock_rejects_non_positive_quantity(self, db_session, product):
        with pytest.raises(ValidationError):
            ledger_service.receive_stock(product.id, 0)

    def test_decrement_below_zero_reports_shortfall(self, db_session, make_product):
        product = make_product("10.00", 3)
        with pytest.raises(InsufficientStock) as exc:
            ledger_service.adjust_stock(product.id, -5, movement_type=StockMovementType.ORDER_RESERVED)
        db_session.rollback()

        assert exc.value.details["available"] == 3
        assert exc.value.details["shortfall"] == 2
        assert db_session.get(Product, product.id).current_stock == 3

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFound):
            ledger_service.adjust_stock(424242, 1, movement_type=StockMovementType.RECEIPT)
        db.session.rollback()
