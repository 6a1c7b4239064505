"""Idempotency keys for the order creation and checkout endpoints.

A client may send an ``Idempotency-Key`` header so that a retried POST does
not create a second order. The first request with a key claims a record
and later stores its response; a retry with the same payload replays that
response, while reusing the key for a different payload (or a different
endpoint) is a conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


class IdempotencyConflict(Exception):
    """Same key reused with a different payload or endpoint."""


class IdempotencyInProgress(Exception):
    """A request with this key is still being processed."""


def _hash(scope: str, payload: dict) -> str:
    """Stable SHA-256 of the endpoint scope and the JSON payload."""
    body = json.dumps({"scope": scope, "payload": payload}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def claim(key: str, scope: str, payload: dict):
    """Claim ``key`` for this request or return the finished record.

    Returns:
        tuple[bool, IdempotencyKey]: ``(replay, rec)``. ``replay`` is True
        when a stored response exists and should be returned as-is.

    Raises:
        IdempotencyConflict: Key exists with a different request hash.
        IdempotencyInProgress: Key exists but its response is not stored yet.
    """
    h = _hash(scope, payload)

    try:
        # Savepoint so an IntegrityError only rolls back this insert
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict(key)
        if not rec.response_status:
            raise IdempotencyInProgress(key)
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Store the response so retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])
