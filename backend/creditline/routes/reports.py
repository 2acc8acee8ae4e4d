# Overview: Flask API routes for statements and aging; parses input and returns JSON responses.

from flask import Blueprint, jsonify

from ..errors import EngineError
from ..services import reporting_service
from .common import date_arg, error_response, int_arg, unexpected_error


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/customers/<int:customer_id>/statement")
def customer_statement_route(customer_id: int):
    """Query params: start_date, end_date (YYYY-MM-DD, inclusive)."""
    try:
        statement = reporting_service.get_customer_statement(
            customer_id,
            date_arg("start_date"),
            date_arg("end_date"),
        )
        return jsonify(statement)
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("build customer statement")


@reports_bp.get("/aging")
def aging_report_route():
    """Query params: org_id (required), as_of (YYYY-MM-DD, default today)."""
    try:
        report = reporting_service.get_aging_report(
            int_arg("org_id", required=True),
            date_arg("as_of"),
        )
        return jsonify(report)
    except EngineError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("build aging report")
