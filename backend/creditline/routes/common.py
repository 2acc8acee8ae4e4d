# Overview: Shared request parsing and error mapping for the API blueprints.

from __future__ import annotations

from flask import current_app, jsonify, request

from ..errors import EngineError, ValidationError
from ..time_utils import parse_iso_date


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    return data


def actor_id() -> int | None:
    """Acting user from X-User-Id (identity is established upstream)."""
    raw = request.headers.get("X-User-Id")
    if raw is None or raw == "":
        return None
    if not raw.isdigit():
        raise ValidationError("X-User-Id must be an integer", details={"header": "X-User-Id"})
    return int(raw)


def int_arg(name: str, *, required: bool = False) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{name} required", details={"missing": [name]})
        return None
    if not raw.isdigit():
        raise ValidationError(f"{name} must be an integer", details={"field": name})
    return int(raw)


def date_arg(name: str):
    try:
        return parse_iso_date(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD", details={"field": name})


def error_response(exc: EngineError):
    if exc.status_code >= 500:
        current_app.logger.error("%s: %s", exc.code, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


def unexpected_error(action: str):
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
