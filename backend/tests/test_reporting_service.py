# Overview: Pytest coverage for customer statements and receivables aging.

from datetime import timedelta

import pytest

from creditline.errors import CustomerNotFound, ValidationError
from creditline.models import Order
from creditline.services import order_service, payment_service, reporting_service
from creditline.services.sequence_service import org_business_date
from creditline.time_utils import utcnow


def _backdate(db_session, order, days):
    order = db_session.get(Order, order.id)
    order.created_at = utcnow() - timedelta(days=days)
    order.business_date = order.business_date - timedelta(days=days)
    db_session.commit()


class TestCustomerStatement:
    def test_running_balance(self, db_session, org, customer, product, place_order):
        order = place_order(customer, [(product, 2)])
        payment_service.record_payment(customer.id, "3000.00", "cash")

        today = org_business_date(org.id)
        statement = reporting_service.get_customer_statement(customer.id, today, today)

        assert statement["opening_balance"] == "0.00"
        assert statement["total_debits"] == "8000.00"
        assert statement["total_credits"] == "3000.00"
        assert statement["closing_balance"] == "5000.00"
        assert [(m["delta"], m["running_balance"]) for m in statement["movements"]] == [
            ("8000.00", "8000.00"),
            ("-3000.00", "5000.00"),
        ]
        assert statement["movements"][0]["order_id"] == order.id

    def test_later_range_opens_with_prior_balance(self, db_session, org, customer, product, place_order):
        place_order(customer, [(product, 1)])

        tomorrow = org_business_date(org.id) + timedelta(days=1)
        statement = reporting_service.get_customer_statement(customer.id, tomorrow)

        assert statement["opening_balance"] == "4000.00"
        assert statement["closing_balance"] == "4000.00"
        assert statement["movements"] == []

    def test_cancellation_shows_as_credit(self, db_session, customer, product, place_order):
        order = place_order(customer, [(product, 1)])
        order_service.cancel_order(order.id, "Wrong item")

        statement = reporting_service.get_customer_statement(customer.id)

        assert statement["closing_balance"] == "0.00"
        assert [m["entry_type"] for m in statement["movements"]] == ["order_created", "order_cancelled"]

    def test_inverted_range(self, db_session, org, customer):
        today = org_business_date(org.id)
        with pytest.raises(ValidationError):
            reporting_service.get_customer_statement(customer.id, today, today - timedelta(days=1))

    def test_unknown_customer(self, db_session):
        with pytest.raises(CustomerNotFound):
            reporting_service.get_customer_statement(424242)


class TestAgingReport:
    @pytest.fixture
    def aged_orders(self, db_session, make_customer, make_product, place_order):
        customer = make_customer(None)
        product = make_product("10.00", 20)
        oldest = place_order(customer, [(product, 1)])
        middle = place_order(customer, [(product, 2)])
        place_order(customer, [(product, 3)])
        _backdate(db_session, oldest, 100)
        _backdate(db_session, middle, 45)
        return customer

    def test_buckets_by_order_age(self, db_session, org, aged_orders):
        payment_service.record_payment(aged_orders.id, "5.00", "cash")

        report = reporting_service.get_aging_report(org.id)

        assert report["bucket_labels"] == ["0-30", "31-60", "61-90", "90+"]
        row = report["customers"][0]
        assert row["customer_id"] == aged_orders.id
        assert row["buckets"] == {"0-30": "30.00", "31-60": "20.00", "61-90": "0.00", "90+": "5.00"}
        assert row["total"] == "55.00"
        assert report["total"] == "55.00"

    def test_as_of_reconstructs_past_balances(self, db_session, org, aged_orders):
        payment_service.record_payment(aged_orders.id, "5.00", "cash")

        as_of = org_business_date(org.id) - timedelta(days=50)
        report = reporting_service.get_aging_report(org.id, as_of)

        # Only the oldest order existed then, and the payment came later
        assert report["customers"][0]["buckets"]["31-60"] == "10.00"
        assert report["total"] == "10.00"

    def test_settled_and_cancelled_orders_are_left_out(self, db_session, org, make_customer, make_product, place_order):
        customer = make_customer(None)
        product = make_product("10.00", 5)
        paid = place_order(customer, [(product, 1)])
        cancelled = place_order(customer, [(product, 1)])
        payment_service.record_payment(customer.id, "10.00", "cash", order_id=paid.id)
        order_service.cancel_order(cancelled.id, "Not needed")

        report = reporting_service.get_aging_report(org.id)

        assert report["customers"] == []
        assert report["total"] == "0.00"
