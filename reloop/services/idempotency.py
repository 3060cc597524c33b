import hashlib
import json
from fastapi import Header
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.errors import ReloopError, IdempotencyConflict
from reloop.models.idempotency import IdempotencyKey


def _hash_request(path: str, body: dict) -> str:
    # Stable hash to detect conflicts (same idempotency key but different request)
    raw = json.dumps({"path": path, "body": body}, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return "sha256:" + hashlib.sha256(raw).hexdigest()


async def optional_idempotency_key(idempotency_key: str | None = Header(default=None)) -> str | None:
    if idempotency_key is not None and len(idempotency_key) > 200:
        raise ReloopError("Idempotency-Key too long")
    return idempotency_key


async def find_idempotent_response(
    *,
    db: AsyncSession,
    user_id: str,
    idempotency_key: str,
    request_path: str,
    request_body: dict,
) -> dict | None:
    """
    Returns the stored response for a completed request with this key, or None.
    The same key with a different request is a conflict.
    """
    req_hash = _hash_request(request_path, request_body)

    stmt = select(IdempotencyKey).where(
        IdempotencyKey.user_id == user_id,
        IdempotencyKey.key == idempotency_key,
    )
    existing = (await db.execute(stmt)).scalar_one_or_none()
    if existing is None:
        return None
    if existing.request_hash != req_hash:
        raise IdempotencyConflict()
    return existing.response


async def store_idempotency_response(
    *,
    db: AsyncSession,
    user_id: str,
    idempotency_key: str,
    request_path: str,
    request_body: dict,
    response: dict,
) -> None:
    # same transaction as the business change; unique(user_id, key) stops a concurrent twin
    db.add(IdempotencyKey(
        user_id=user_id,
        key=idempotency_key,
        request_hash=_hash_request(request_path, request_body),
        response=response,
    ))
    try:
        await db.flush()
    except IntegrityError as e:
        raise IdempotencyConflict("A request with this Idempotency-Key is already in progress") from e
