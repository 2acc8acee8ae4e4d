# Overview: Pytest coverage for the HTTP adapter (status codes, error bodies, JSON shapes).

"""
API Route Tests

Verifies the blueprints map engine errors to status codes:
- ValidationError -> 400, NotFoundError -> 404, ConflictError -> 409
and that credit/stock refusals carry the numeric shortfall.
"""

import pytest

from creditline.services import delivery_service


def _order_body(org, customer, product, quantity):
    return {
        "org_id": org.id,
        "customer_id": customer.id,
        "items": [{"product_id": product.id, "quantity": quantity}],
    }


class TestOrderRoutes:
    def test_credit_refusal_is_409_with_available_credit(self, client, org, customer, product):
        resp = client.post("/api/orders", json=_order_body(org, customer, product, 3))

        assert resp.status_code == 409
        assert resp.json["code"] == "CREDIT_LIMIT_EXCEEDED"
        assert resp.json["details"]["available_credit"] == "10000.00"

    def test_stock_refusal_is_409_with_available_stock(self, client, org, make_customer, make_product):
        customer = make_customer(None)
        product = make_product("1.00", 2)

        resp = client.post("/api/orders", json=_order_body(org, customer, product, 5))

        assert resp.status_code == 409
        assert resp.json["code"] == "INSUFFICIENT_STOCK"
        assert resp.json["details"]["available"] == 2

    def test_create_and_read(self, client, org, customer, product, manager):
        resp = client.post(
            "/api/orders",
            json=_order_body(org, customer, product, 2),
            headers={"X-User-Id": str(manager.id)},
        )
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["total"] == "8000.00"
        assert order["amount_due"] == "8000.00"
        assert order["status"] == "pending"
        assert order["created_by_user_id"] == manager.id

        resp = client.get(f"/api/orders/{order['id']}")
        assert resp.status_code == 200
        assert resp.json["order"]["items"][0]["quantity"] == 2

    def test_idempotency_key_header(self, client, org, customer, product):
        headers = {"Idempotency-Key": "retry-me"}
        first = client.post("/api/orders", json=_order_body(org, customer, product, 1), headers=headers)
        second = client.post("/api/orders", json=_order_body(org, customer, product, 1), headers=headers)

        assert first.status_code == 201
        assert second.status_code == 201
        assert first.json["order"]["id"] == second.json["order"]["id"]

    def test_missing_fields_is_400(self, client, org):
        resp = client.post("/api/orders", json={"org_id": org.id})
        assert resp.status_code == 400
        assert set(resp.json["details"]["missing"]) == {"customer_id", "items"}

    def test_unknown_order_is_404(self, client, db_session):
        resp = client.get("/api/orders/424242")
        assert resp.status_code == 404
        assert resp.json["code"] == "ORDER_NOT_FOUND"

    def test_unknown_status_is_400(self, client, org, customer, product):
        order_id = client.post("/api/orders", json=_order_body(org, customer, product, 1)).json["order"]["id"]
        resp = client.post(f"/api/orders/{order_id}/status", json={"status": "shipped"})
        assert resp.status_code == 400
        assert resp.json["code"] == "VALIDATION_ERROR"
        assert "pending" in resp.json["details"]["allowed"]

    def test_cancel_and_status(self, client, org, customer, product):
        order_id = client.post("/api/orders", json=_order_body(org, customer, product, 1)).json["order"]["id"]

        resp = client.post(f"/api/orders/{order_id}/status", json={"status": "confirmed"})
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "confirmed"

        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Out of budget"})
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "cancelled"

        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Again"})
        assert resp.status_code == 409
        assert resp.json["code"] == "INVALID_STATE_TRANSITION"


class TestPaymentRoutes:
    def test_record_and_list(self, client, customer, product, place_order):
        place_order(customer, [(product, 1)])

        resp = client.post("/api/payments", json={"customer_id": customer.id, "amount": "1500.00", "mode": "cash"})
        assert resp.status_code == 201
        assert resp.json["payment"]["customer_debt_after"] == "2500.00"

        resp = client.get(f"/api/payments/customers/{customer.id}")
        assert [p["amount"] for p in resp.json["payments"]] == ["1500.00"]

    @pytest.mark.parametrize("amount", ["-5", "0", "1.234"])
    def test_bad_amount_is_400(self, client, customer, amount):
        resp = client.post("/api/payments", json={"customer_id": customer.id, "amount": amount, "mode": "cash"})
        assert resp.status_code == 400
        assert resp.json["code"] == "INVALID_AMOUNT"

    def test_overpayment_is_409(self, client, customer):
        resp = client.post("/api/payments", json={"customer_id": customer.id, "amount": "1.00", "mode": "cash"})
        assert resp.status_code == 409
        assert resp.json["code"] == "OVERPAYMENT_NOT_SUPPORTED"


class TestDeliveryAndRegisterRoutes:
    def test_settle_and_close(self, client, org, customer, make_product, place_order, make_ready, deliverer, manager):
        order = make_ready(place_order(customer, [(make_product("2500.00", 4), 2)]))

        delivery_id = client.post("/api/deliveries", json={"order_id": order.id}).json["delivery"]["id"]
        assert client.post(f"/api/deliveries/{delivery_id}/assign", json={"deliverer_id": deliverer.id}).status_code == 200
        assert client.post(f"/api/deliveries/{delivery_id}/status", json={"status": "picked_up"}).status_code == 200

        resp = client.post(f"/api/deliveries/{delivery_id}/complete", json={"amount_collected": "3000.00"})
        assert resp.status_code == 200
        register_id = resp.json["delivery"]["register_id"]

        resp = client.get("/api/registers", query_string={"org_id": org.id})
        assert [r["id"] for r in resp.json["registers"]] == [register_id]

        resp = client.post(
            f"/api/registers/{register_id}/close",
            json={"cash_handed_over": "3000.00"},
            headers={"X-User-Id": str(manager.id)},
        )
        assert resp.status_code == 200
        assert resp.json["register"]["discrepancy"] == "0.00"

        resp = client.get(f"/api/registers/{register_id}")
        assert resp.json["register"]["is_closed"] is True
        assert resp.json["adjusted_discrepancy"] == "0.00"

    def test_list_deliveries_requires_org(self, client, db_session):
        resp = client.get("/api/deliveries")
        assert resp.status_code == 400

    def test_fail_route(self, client, customer, product, place_order, make_ready, deliverer):
        order = make_ready(place_order(customer, [(product, 1)]))
        delivery = delivery_service.create_delivery(order.id)
        delivery_service.assign_delivery(delivery.id, deliverer.id)

        resp = client.post(f"/api/deliveries/{delivery.id}/fail", json={"reason": "Gate locked"})

        assert resp.status_code == 200
        assert resp.json["delivery"]["status"] == "failed"


class TestReportRoutes:
    def test_statement_and_aging(self, client, org, customer, product, place_order):
        place_order(customer, [(product, 1)])

        resp = client.get(f"/api/reports/customers/{customer.id}/statement")
        assert resp.status_code == 200
        assert resp.json["closing_balance"] == "4000.00"

        resp = client.get("/api/reports/aging", query_string={"org_id": org.id})
        assert resp.status_code == 200
        assert resp.json["totals"]["0-30"] == "4000.00"

    def test_bad_date_is_400(self, client, customer):
        resp = client.get(f"/api/reports/customers/{customer.id}/statement", query_string={"start_date": "yesterday"})
        assert resp.status_code == 400
