# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment API Routes

- POST /api/payments                     record a payment (FIFO or explicit order)
- POST /api/payments/refunds             refund money paid on a cancelled order
- GET  /api/payments/<id>                read with allocation breakdown
- GET  /api/payments/customers/<id>      customer's payments, oldest first
"""

from flask import Blueprint, jsonify, request

from ..errors import EngineError
from ..services import payment_service
from ..validation import require_fields
from .common import actor_id, error_response, json_body, unexpected_error


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
def record_payment_route():
    """
    Request body:
    {
        "customer_id": 7,
        "amount": "150.00",
        "mode": "cash",               (cash, check, bank_transfer, mobile_payment)
        "order_id": 12,               (optional: allocate here first)
        "idempotency_key": "...",     (optional, or Idempotency-Key header)
        "check_number": "...",        (optional)
        "check_bank": "...",          (optional)
        "notes": "..."                (optional)
    }
    """
    try:
        data = require_fields(json_body(), "customer_id", "amount", "mode")
        payment = payment_service.record_payment(
            data["customer_id"],
            data["amount"],
            data["mode"],
            data.get("order_id"),
            data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
            actor_user_id=actor_id(),
            check_number=data.get("check_number"),
            check_bank=data.get("check_bank"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("record payment")


@payments_bp.post("/refunds")
def refund_payment_route():
    try:
        data = require_fields(json_body(), "order_id", "amount", "mode")
        payment = payment_service.refund_payment(
            data["order_id"],
            data["amount"],
            data["mode"],
            actor_user_id=actor_id(),
            reason=data.get("reason"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("refund payment")


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        return jsonify({"payment": payment_service.get_payment(payment_id).to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("get payment")


@payments_bp.get("/customers/<int:customer_id>")
def list_customer_payments_route(customer_id: int):
    try:
        payments = payment_service.list_customer_payments(customer_id)
        return jsonify({"payments": [p.to_dict() for p in payments]})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("list payments")
