# Overview: Engine error taxonomy shared by services and routes.

"""
Error taxonomy

- ValidationError (400): malformed input, fixed by correcting the request
- NotFoundError   (404): referenced entity does not exist in the organization
- ConflictError   (409): business rule or concurrency conflict; re-read state and retry
- InternalError   (500): storage/transaction failure; never retried by the engine

Every error carries a stable `code` and a `details` dict. Credit and stock
failures put the numeric shortfall in `details` so callers can build an
actionable message.
"""

from __future__ import annotations

from decimal import Decimal


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class EngineError(Exception):
    """Root of all errors raised by the engine."""
    code = "ENGINE_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": _jsonable(self.details),
        }


class ValidationError(EngineError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(EngineError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id=None):
        message = f"{entity} {entity_id} not found" if entity_id is not None else f"{entity} not found"
        super().__init__(message, details={"entity": entity, "id": entity_id})


class ConflictError(EngineError):
    """409-level business rule conflict."""
    code = "CONFLICT"
    status_code = 409


class InternalError(EngineError):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = "Internal server error", details: dict | None = None):
        super().__init__(message, details)


# =============================================================================
# COMMON SPECIALISATIONS
# =============================================================================

class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"


class CustomerNotFound(NotFoundError):
    code = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id):
        super().__init__("Customer", customer_id)


class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id):
        super().__init__("Product", product_id)


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id):
        super().__init__("Order", order_id)


class PaymentNotFound(NotFoundError):
    code = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id):
        super().__init__("Payment", payment_id)


class DeliveryNotFound(NotFoundError):
    code = "DELIVERY_NOT_FOUND"

    def __init__(self, delivery_id):
        super().__init__("Delivery", delivery_id)


class RegisterNotFound(NotFoundError):
    code = "REGISTER_NOT_FOUND"

    def __init__(self, register_id):
        super().__init__("Daily cash register", register_id)


class UserNotFound(NotFoundError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id):
        super().__init__("User", user_id)


class ConcurrencyConflict(ConflictError):
    """Lock timeout, deadlock or stale version that survived every retry."""
    code = "CONCURRENCY_CONFLICT"
    retryable = True


class IdempotencyKeyReused(ConflictError):
    code = "IDEMPOTENCY_KEY_REUSED"
