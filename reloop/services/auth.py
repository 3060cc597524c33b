from dataclasses import dataclass

from fastapi import Depends, Security
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.db import get_db
from reloop.core.errors import Unauthenticated
from reloop.core.security import key_prefix, verify_api_key
from reloop.models.api_key import ApiKey

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass(frozen=True)
class Viewer:
    """Who is calling. Passed explicitly into every service call."""

    user_id: str
    api_key_id: str | None = None


async def resolve_viewer(db: AsyncSession, api_key: str | None) -> Viewer | None:
    if not api_key:
        return None
    prefix = key_prefix(api_key)
    if prefix is None:
        return None

    stmt = select(ApiKey).where(ApiKey.key_prefix == prefix, ApiKey.is_active.is_(True))
    for row in (await db.execute(stmt)).scalars().all():
        if verify_api_key(api_key, row.key_hash):
            return Viewer(user_id=row.user_id, api_key_id=row.id)
    return None


async def get_viewer(
    api_key: str | None = Security(api_key_header),
    db: AsyncSession = Depends(get_db),
) -> Viewer:
    if not api_key:
        raise Unauthenticated("Missing X-API-Key")

    viewer = await resolve_viewer(db, api_key)
    if viewer is None:
        raise Unauthenticated("Invalid API key")
    return viewer


async def get_optional_viewer(
    api_key: str | None = Security(api_key_header),
    db: AsyncSession = Depends(get_db),
) -> Viewer | None:
    return await resolve_viewer(db, api_key)
