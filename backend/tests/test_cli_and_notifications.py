# Overview: Pytest coverage for CLI commands and post-commit notification hooks.

from decimal import Decimal

from sqlalchemy import update

from creditline.models import Customer
from creditline.services import notification_service, order_service


class TestLedgerCli:
    def test_verify_passes_on_clean_books(self, app, org, customer, product, place_order):
        place_order(customer, [(product, 1)])

        result = app.test_cli_runner().invoke(args=["ledger", "verify"])

        assert result.exit_code == 0
        assert "PASS ACME" in result.output

    def test_verify_fails_on_drift(self, app, db_session, org, customer, product, place_order):
        place_order(customer, [(product, 1)])
        db_session.execute(
            update(Customer.__table__).where(Customer.__table__.c.id == customer.id).values(current_debt=Decimal("1.00"))
        )
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "verify", "--org-id", str(org.id)])

        assert result.exit_code == 1
        assert "FAIL ACME" in result.output
        assert "debt_vs_ledger_sum" in result.output

    def test_init_db_is_repeatable(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["ledger", "init-db"])
        assert result.exit_code == 0
        assert "Tables created" in result.output


class TestRegistersCli:
    def test_list_empty_day(self, app, db_session, org):
        result = app.test_cli_runner().invoke(args=["registers", "list", "--date", "2026-03-01"])
        assert result.exit_code == 0
        assert "No registers found." in result.output

    def test_bad_date(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["registers", "list", "--date", "03/01/2026"])
        assert result.exit_code != 0


class TestNotifications:
    def test_events_fire_after_commit(self, db_session, customer, product, place_order, notifications):
        order = place_order(customer, [(product, 1)])
        order_service.cancel_order(order.id, "Changed plans")

        assert [event for event, _ in notifications] == ["order.created", "order.cancelled"]
        assert notifications[0][1]["order_number"] == order.order_number

    def test_failing_handler_never_undoes_the_operation(self, app, db_session, customer, product, place_order, notifications):
        def broken(event, payload):
            raise RuntimeError("SMS gateway down")

        notification_service.register_notifier(app, broken)
        try:
            order = place_order(customer, [(product, 1)])
        finally:
            app.extensions["creditline.notifiers"].remove(broken)

        assert order.id is not None
        assert db_session.get(Customer, customer.id).current_debt == Decimal("4000.00")
        assert [event for event, _ in notifications] == ["order.created"]
