# Overview: Flask API routes for daily cash registers; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..errors import EngineError
from ..services import register_service
from ..validation import require_fields
from .common import actor_id, date_arg, error_response, int_arg, json_body, unexpected_error


registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")


@registers_bp.get("")
def list_registers_route():
    """Query params: org_id (required), date, deliverer_id, is_closed."""
    try:
        is_closed = request.args.get("is_closed")
        registers = register_service.list_registers(
            int_arg("org_id", required=True),
            business_date=date_arg("date"),
            deliverer_id=int_arg("deliverer_id"),
            is_closed=None if is_closed is None else is_closed.lower() == "true",
        )
        return jsonify({"registers": [r.to_dict() for r in registers]})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("list registers")


@registers_bp.get("/<int:register_id>")
def get_register_route(register_id: int):
    try:
        return jsonify(register_service.get_register_summary(register_id))
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("get register")


@registers_bp.post("/<int:register_id>/close")
def close_register_route(register_id: int):
    """Request body: {"cash_handed_over": "250.00", "notes": "..."}"""
    try:
        data = require_fields(json_body(), "cash_handed_over")
        register = register_service.close_daily_cash(
            register_id,
            data["cash_handed_over"],
            notes=data.get("notes"),
            closed_by_user_id=actor_id(),
        )
        return jsonify({"register": register.to_dict()})
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("close register")


@registers_bp.post("/<int:register_id>/adjustments")
def add_adjustment_route(register_id: int):
    """Request body: {"amount": "-5.00", "reason": "..."}"""
    try:
        data = require_fields(json_body(), "amount", "reason")
        adjustment = register_service.add_register_adjustment(
            register_id,
            data["amount"],
            data["reason"],
            actor_user_id=actor_id(),
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("add register adjustment")
