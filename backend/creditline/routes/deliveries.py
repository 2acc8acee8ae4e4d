# Overview: Flask API routes for deliveries; parses input and returns JSON responses.

"""
Delivery API Routes

- POST /api/deliveries                       open a delivery for an order
- GET  /api/deliveries?org_id=&deliverer_id=&status=
- GET  /api/deliveries/<id>
- POST /api/deliveries/<id>/assign           {"deliverer_id"}
- POST /api/deliveries/<id>/status           {"status": picked_up|in_transit|arrived}
- POST /api/deliveries/<id>/complete         {"amount_collected", "mode", "proof"}
- POST /api/deliveries/<id>/fail             {"reason", "reschedule_date"}
- POST /api/deliveries/collect-debt          {"customer_id", "deliverer_id", "amount", "mode"}
"""

from flask import Blueprint, jsonify, request

from ..errors import EngineError
from ..services import delivery_service
from ..validation import require_fields
from .common import date_arg, error_response, int_arg, json_body, unexpected_error


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


@deliveries_bp.post("")
def create_delivery_route():
    try:
        data = require_fields(json_body(), "order_id")
        delivery = delivery_service.create_delivery(
            data["order_id"],
            scheduled_date=data.get("scheduled_date"),
            previous_delivery_id=data.get("previous_delivery_id"),
        )
        return jsonify({"delivery": delivery.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("create delivery")


@deliveries_bp.get("")
def list_deliveries_route():
    try:
        deliveries = delivery_service.list_deliveries(
            int_arg("org_id", required=True),
            deliverer_id=int_arg("deliverer_id"),
            status=request.args.get("status") or None,
            scheduled_date=date_arg("scheduled_date"),
        )
        return jsonify({"deliveries": [d.to_dict() for d in deliveries]})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("list deliveries")


@deliveries_bp.get("/<int:delivery_id>")
def get_delivery_route(delivery_id: int):
    try:
        return jsonify({"delivery": delivery_service.get_delivery(delivery_id).to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("get delivery")


@deliveries_bp.post("/<int:delivery_id>/assign")
def assign_delivery_route(delivery_id: int):
    try:
        data = require_fields(json_body(), "deliverer_id")
        delivery = delivery_service.assign_delivery(delivery_id, data["deliverer_id"])
        return jsonify({"delivery": delivery.to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("assign delivery")


@deliveries_bp.post("/<int:delivery_id>/status")
def advance_delivery_route(delivery_id: int):
    try:
        data = require_fields(json_body(), "status")
        delivery = delivery_service.advance_delivery(delivery_id, data["status"])
        return jsonify({"delivery": delivery.to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("update delivery status")


@deliveries_bp.post("/<int:delivery_id>/complete")
def complete_delivery_route(delivery_id: int):
    """
    Request body:
    {
        "amount_collected": "30.00",   (0 allowed: nothing collected)
        "mode": "cash",
        "proof": {"signature": "...", "photo_url": "..."}   (optional)
    }
    """
    try:
        data = require_fields(json_body(), "amount_collected")
        delivery = delivery_service.complete_delivery(
            delivery_id,
            data["amount_collected"],
            data.get("mode") or "cash",
            data.get("proof"),
        )
        return jsonify({"delivery": delivery.to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("complete delivery")


@deliveries_bp.post("/<int:delivery_id>/fail")
def fail_delivery_route(delivery_id: int):
    try:
        data = require_fields(json_body(), "reason")
        delivery = delivery_service.fail_delivery(
            delivery_id,
            data["reason"],
            data.get("reschedule_date"),
        )
        return jsonify({"delivery": delivery.to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("fail delivery")


@deliveries_bp.post("/collect-debt")
def collect_debt_route():
    try:
        data = require_fields(json_body(), "customer_id", "deliverer_id", "amount")
        payment = delivery_service.collect_debt(
            data["customer_id"],
            data["deliverer_id"],
            data["amount"],
            data.get("mode") or "cash",
            data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("collect debt")
