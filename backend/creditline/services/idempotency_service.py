# Overview: Client idempotency keys for order creation and payments.

from __future__ import annotations

import hashlib
import json
from typing import Optional

from ..errors import IdempotencyKeyReused, ValidationError
from ..extensions import db
from ..models import IdempotencyKey

ORDER_SCOPE = "order"
PAYMENT_SCOPE = "payment"
COLLECTION_SCOPE = "collection"

MAX_KEY_LENGTH = 128


def normalize_key(key) -> Optional[str]:
    if key is None:
        return None
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("idempotency_key must be a non-empty string", details={"field": "idempotency_key"})
    key = key.strip()
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(
            f"idempotency_key cannot exceed {MAX_KEY_LENGTH} characters",
            details={"field": "idempotency_key"},
        )
    return key


def fingerprint(**params) -> str:
    """Stable hash of the request parameters a key was first used with."""
    payload = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def lookup(*, org_id: int, scope: str, key: Optional[str], request_hash: str) -> Optional[int]:
    """
    Entity id previously committed under this key, or None.

    Raises IdempotencyKeyReused when the key was used with different
    parameters; the earlier result is never returned for another request.
    """
    if key is None:
        return None
    record = (
        db.session.query(IdempotencyKey)
        .filter_by(org_id=org_id, scope=scope, key=key)
        .first()
    )
    if record is None:
        return None
    if record.request_hash != request_hash:
        raise IdempotencyKeyReused(
            f"Idempotency key '{key}' was already used with different parameters",
            details={"scope": scope, "key": key, "entity_id": record.entity_id},
        )
    return record.entity_id


def remember(*, org_id: int, scope: str, key: Optional[str], request_hash: str, entity_id: int) -> None:
    """Record the key inside the caller's transaction (no commit)."""
    if key is None:
        return
    db.session.add(IdempotencyKey(
        org_id=org_id,
        scope=scope,
        key=key,
        request_hash=request_hash,
        entity_id=entity_id,
    ))
    db.session.flush()
