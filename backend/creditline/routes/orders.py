# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

- POST /api/orders                       create (Idempotency-Key header or body key)
- GET  /api/orders/<id>                  read with items
- POST /api/orders/<id>/status           warehouse status change
- POST /api/orders/<id>/cancel           cancel with reason
- GET  /api/orders/customers/<id>        customer's orders, oldest first
"""

from flask import Blueprint, jsonify, request

from ..errors import EngineError
from ..services import order_service
from ..validation import require_fields
from .common import actor_id, error_response, json_body, unexpected_error


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
def create_order_route():
    """
    Request body:
    {
        "org_id": 1,
        "customer_id": 7,
        "items": [{"product_id": 3, "quantity": 2}],
        "idempotency_key": "c1a9...",  (optional, or Idempotency-Key header)
        "notes": "..."                 (optional)
    }
    """
    try:
        data = require_fields(json_body(), "org_id", "customer_id", "items")
        order = order_service.create_order(
            data["customer_id"],
            data["org_id"],
            data["items"],
            data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
            actor_user_id=actor_id(),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("create order")


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return jsonify({"order": order_service.get_order(order_id).to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("get order")


@orders_bp.post("/<int:order_id>/status")
def update_order_status_route(order_id: int):
    try:
        data = require_fields(json_body(), "status")
        order = order_service.update_order_status(order_id, data["status"], actor_user_id=actor_id())
        return jsonify({"order": order.to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("update order status")


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    try:
        data = require_fields(json_body(), "reason")
        order = order_service.cancel_order(order_id, data["reason"], actor_user_id=actor_id())
        return jsonify({"order": order.to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("cancel order")


@orders_bp.get("/customers/<int:customer_id>")
def list_customer_orders_route(customer_id: int):
    try:
        orders = order_service.list_customer_orders(
            customer_id,
            status=request.args.get("status") or None,
            open_only=request.args.get("open_only", "false").lower() == "true",
        )
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("list orders")
