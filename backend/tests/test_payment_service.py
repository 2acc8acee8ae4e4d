# Overview: Pytest coverage for payment allocation, overpayment policy and refunds.

from decimal import Decimal

import pytest

from creditline.errors import IdempotencyKeyReused, InvalidAmount, ValidationError
from creditline.models import Customer, Order, Payment, PaymentType
from creditline.services import audit_service, order_service, payment_service
from creditline.services.payment_service import (
    InvalidPaymentTarget,
    OverpaymentNotSupported,
    RefundExceedsPaid,
)
from creditline.services.sequence_service import org_business_date


@pytest.fixture
def two_orders(make_customer, make_product, place_order):
    """Customer owing 20.00 (older order) + 30.00 (newer order)."""
    customer = make_customer(None)
    product = make_product("10.00", 20)
    older = place_order(customer, [(product, 2)])
    newer = place_order(customer, [(product, 3)])
    return customer, older, newer


def _order(db_session, order):
    return db_session.get(Order, order.id)


class TestRecordPayment:
    def test_fifo_allocation_oldest_first(self, db_session, org, two_orders):
        customer, older, newer = two_orders

        payment = payment_service.record_payment(customer.id, "25.00", "cash")

        assert payment.payment_type == PaymentType.DEBT_PAYMENT
        assert payment.customer_debt_before == Decimal("50.00")
        assert payment.customer_debt_after == Decimal("25.00")
        assert [(a.order_id, a.amount_applied, a.position) for a in payment.allocations] == [
            (older.id, Decimal("20.00"), 1),
            (newer.id, Decimal("5.00"), 2),
        ]
        assert _order(db_session, older).payment_status == "paid"
        assert _order(db_session, newer).amount_due == Decimal("25.00")
        assert db_session.get(Customer, customer.id).current_debt == Decimal("25.00")
        assert audit_service.verify_organization(org.id) == []

    def test_explicit_order_is_paid_first(self, db_session, two_orders):
        customer, older, newer = two_orders

        payment = payment_service.record_payment(customer.id, "35.00", "check", order_id=newer.id, check_number="000123")

        assert payment.payment_type == PaymentType.ORDER_PAYMENT
        assert [(a.order_id, a.amount_applied) for a in payment.allocations] == [
            (newer.id, Decimal("30.00")),
            (older.id, Decimal("5.00")),
        ]
        assert payment.check_number == "000123"

    def test_settled_explicit_order_falls_through_to_fifo(self, db_session, two_orders):
        customer, older, newer = two_orders
        payment_service.record_payment(customer.id, "30.00", "cash", order_id=newer.id)

        payment = payment_service.record_payment(customer.id, "5.00", "cash", order_id=newer.id)

        assert [(a.order_id, a.amount_applied) for a in payment.allocations] == [(older.id, Decimal("5.00"))]
        assert _order(db_session, newer).amount_paid == Decimal("30.00")
        assert _order(db_session, older).amount_paid == Decimal("5.00")

    def test_cancelled_explicit_order_is_refused(self, db_session, two_orders):
        customer, older, newer = two_orders
        order_service.cancel_order(newer.id, "Wrong items")

        with pytest.raises(InvalidPaymentTarget):
            payment_service.record_payment(customer.id, "5.00", "cash", order_id=newer.id)
        assert _order(db_session, older).amount_paid == Decimal("0.00")

    def test_receipt_numbers_use_daily_sequence(self, db_session, org, two_orders):
        customer, _, _ = two_orders
        day = org_business_date(org.id)

        first = payment_service.record_payment(customer.id, "1.00", "cash")
        second = payment_service.record_payment(customer.id, "1.00", "cash")

        assert first.receipt_number == f"REC-{day:%Y%m%d}-0001"
        assert second.receipt_number == f"REC-{day:%Y%m%d}-0002"

    def test_overpayment_is_rejected_not_capped(self, db_session, two_orders):
        customer, older, _ = two_orders

        with pytest.raises(OverpaymentNotSupported) as exc:
            payment_service.record_payment(customer.id, "50.01", "cash")

        assert exc.value.details["excess"] == Decimal("0.01")
        assert db_session.get(Customer, customer.id).current_debt == Decimal("50.00")
        assert _order(db_session, older).amount_paid == Decimal("0.00")
        assert db_session.query(Payment).count() == 0

    def test_paying_full_debt_settles_every_order(self, db_session, two_orders):
        customer, older, newer = two_orders

        payment_service.record_payment(customer.id, "50.00", "bank_transfer")

        assert db_session.get(Customer, customer.id).current_debt == Decimal("0.00")
        assert _order(db_session, older).amount_due == Decimal("0.00")
        assert _order(db_session, newer).amount_due == Decimal("0.00")

    @pytest.mark.parametrize("amount", ["0", "-5.00", "1.001", "abc", None, True])
    def test_invalid_amounts(self, db_session, two_orders, amount):
        customer, _, _ = two_orders
        with pytest.raises(InvalidAmount):
            payment_service.record_payment(customer.id, amount, "cash")

    def test_invalid_mode(self, db_session, two_orders):
        customer, _, _ = two_orders
        with pytest.raises(ValidationError):
            payment_service.record_payment(customer.id, "1.00", "barter")

    def test_order_of_another_customer_is_refused(self, db_session, two_orders, make_customer, make_product, place_order):
        customer, _, _ = two_orders
        stranger = make_customer(None, name="Stranger")
        foreign = place_order(stranger, [(make_product("1.00", 1), 1)])

        with pytest.raises(InvalidPaymentTarget):
            payment_service.record_payment(customer.id, "1.00", "cash", order_id=foreign.id)

    def test_idempotent_retry_returns_first_payment(self, db_session, two_orders):
        customer, _, _ = two_orders

        first = payment_service.record_payment(customer.id, "10.00", "cash", idempotency_key="pay-1")
        again = payment_service.record_payment(customer.id, "10.00", "cash", idempotency_key="pay-1")

        assert first.id == again.id
        assert db_session.get(Customer, customer.id).current_debt == Decimal("40.00")

        with pytest.raises(IdempotencyKeyReused):
            payment_service.record_payment(customer.id, "11.00", "cash", idempotency_key="pay-1")


class TestRefund:
    def test_refund_on_cancelled_order_leaves_debt_untouched(self, db_session, org, two_orders):
        customer, older, _ = two_orders
        payment_service.record_payment(customer.id, "5.00", "cash", order_id=older.id)
        order_service.cancel_order(older.id, "Damaged goods")

        # Only the unpaid 15.00 was reversed; 30.00 remains on the other order
        assert db_session.get(Customer, customer.id).current_debt == Decimal("30.00")
        assert _order(db_session, older).amount_paid == Decimal("5.00")

        refund = payment_service.refund_payment(older.id, "5.00", "cash", reason="Goods returned")

        assert refund.payment_type == PaymentType.REFUND
        assert refund.refunded_order_id == older.id
        assert refund.customer_debt_before == refund.customer_debt_after == Decimal("30.00")
        assert [a.amount_applied for a in refund.allocations] == [Decimal("-5.00")]
        assert _order(db_session, older).amount_paid == Decimal("0.00")
        assert db_session.get(Customer, customer.id).current_debt == Decimal("30.00")
        assert audit_service.verify_organization(org.id) == []

    def test_refund_more_than_paid(self, db_session, two_orders):
        customer, older, _ = two_orders
        payment_service.record_payment(customer.id, "5.00", "cash", order_id=older.id)
        order_service.cancel_order(older.id, "Damaged goods")

        with pytest.raises(RefundExceedsPaid):
            payment_service.refund_payment(older.id, "5.01", "cash")

    def test_refund_requires_cancelled_order(self, db_session, two_orders):
        customer, older, _ = two_orders
        payment_service.record_payment(customer.id, "5.00", "cash", order_id=older.id)

        with pytest.raises(InvalidPaymentTarget):
            payment_service.refund_payment(older.id, "5.00", "cash")


class TestPaymentReads:
    def test_list_customer_payments_oldest_first(self, db_session, two_orders):
        customer, _, _ = two_orders
        first = payment_service.record_payment(customer.id, "1.00", "cash")
        second = payment_service.record_payment(customer.id, "2.00", "cash")

        listed = payment_service.list_customer_payments(customer.id)

        assert [p.id for p in listed] == [first.id, second.id]
        assert payment_service.get_payment(first.id).to_dict()["amount"] == "1.00"
