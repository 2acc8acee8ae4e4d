# Overview: Pytest coverage for daily cash register close and adjustments.

from datetime import date
from decimal import Decimal

import pytest

from creditline.errors import RegisterNotFound, UserNotFound
from creditline.models import DailyCashRegister
from creditline.services import delivery_service, register_service
from creditline.services.register_service import RegisterClosed, RegisterNotClosed


@pytest.fixture
def settled_register(db_session, customer, make_product, place_order, make_ready, deliverer):
    """Register with one 3000.00 cash collection against 5000.00 expected."""
    product = make_product("2500.00", 10)
    order = make_ready(place_order(customer, [(product, 2)]))
    delivery = delivery_service.create_delivery(order.id)
    delivery_service.assign_delivery(delivery.id, deliverer.id)
    delivery_service.advance_delivery(delivery.id, "picked_up")
    delivery = delivery_service.complete_delivery(delivery.id, "3000.00")
    return db_session.get(DailyCashRegister, delivery.register_id)


class TestRegisterAccess:
    def test_one_register_per_deliverer_and_day(self, db_session, org, deliverer):
        day = date(2026, 3, 1)
        first = register_service.get_or_create_register(org.id, deliverer.id, day)
        second = register_service.get_or_create_register(org.id, deliverer.id, day)

        assert first.id == second.id
        assert first.is_closed is False
        assert first.expected_collection == Decimal("0.00")

    def test_unknown_deliverer(self, db_session, org):
        with pytest.raises(UserNotFound):
            register_service.get_or_create_register(org.id, 424242)

    def test_list_registers_filters(self, db_session, org, deliverer):
        register_service.get_or_create_register(org.id, deliverer.id, date(2026, 3, 1))
        register_service.get_or_create_register(org.id, deliverer.id, date(2026, 3, 2))

        listed = register_service.list_registers(org.id, business_date=date(2026, 3, 2))

        assert [r.business_date for r in listed] == [date(2026, 3, 2)]
        assert len(register_service.list_registers(org.id, is_closed=False)) == 2


class TestCloseDailyCash:
    def test_close_records_discrepancy(self, db_session, settled_register, manager, notifications):
        register = register_service.close_daily_cash(
            settled_register.id, "2900.00", notes="Short 100", closed_by_user_id=manager.id
        )

        assert register.is_closed is True
        assert register.cash_handed_over == Decimal("2900.00")
        assert register.discrepancy == Decimal("-100.00")
        assert register.closed_by_user_id == manager.id
        assert register.closed_at is not None
        assert [event for event, _ in notifications] == ["register.closed"]

    def test_second_close_is_refused(self, db_session, settled_register):
        register_service.close_daily_cash(settled_register.id, "3000.00")
        with pytest.raises(RegisterClosed):
            register_service.close_daily_cash(settled_register.id, "2000.00")

        register = db_session.get(DailyCashRegister, settled_register.id)
        assert register.cash_handed_over == Decimal("3000.00")
        assert register.discrepancy == Decimal("0.00")

    def test_unknown_register(self, db_session):
        with pytest.raises(RegisterNotFound):
            register_service.close_daily_cash(424242, "1.00")


class TestAdjustments:
    def test_adjustment_requires_closed_register(self, db_session, settled_register):
        with pytest.raises(RegisterNotClosed):
            register_service.add_register_adjustment(settled_register.id, "100.00", "Late hand-over")

    def test_adjustments_fold_into_summary(self, db_session, settled_register, manager):
        register_service.close_daily_cash(settled_register.id, "2900.00")

        register_service.add_register_adjustment(settled_register.id, "100.00", "Late hand-over", manager.id)
        register_service.add_register_adjustment(settled_register.id, "-20.00", "Counterfeit note", manager.id)

        summary = register_service.get_register_summary(settled_register.id)
        assert summary["register"]["discrepancy"] == "-100.00"
        assert summary["adjustments_total"] == "80.00"
        assert summary["adjusted_discrepancy"] == "-20.00"
        assert [a["reason"] for a in summary["adjustments"]] == ["Late hand-over", "Counterfeit note"]

        # The closed register row itself is never edited
        register = db_session.get(DailyCashRegister, settled_register.id)
        assert register.discrepancy == Decimal("-100.00")
