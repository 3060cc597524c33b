import pytest_asyncio

from reloop.core.security import generate_api_key
from reloop.models.api_key import ApiKey
from reloop.services import listings as listing_service


async def _issue_key(db, user_id: str) -> dict:
    key = generate_api_key()
    row = ApiKey(user_id=user_id, key_prefix=key.prefix, key_hash=key.hashed, is_active=True)
    db.add(row)
    await db.flush()
    return {
        "user_id": user_id,
        "plain_key": key.plain,
        "api_key_id": row.id,
        "headers": {"X-API-Key": key.plain},
    }


@pytest_asyncio.fixture
async def users(db_session):
    """Three signed-in users: alice owns listings, bob and carol respond."""
    seeded = {}
    for name in ("alice", "bob", "carol"):
        seeded[name] = await _issue_key(db_session, f"usr_{name}")
    await db_session.commit()
    return seeded


@pytest_asyncio.fixture
async def listing(db_session, users):
    lst = await listing_service.create_listing(
        db_session,
        owner_id=users["alice"]["user_id"],
        intent="give",
        title="Oak bookshelf",
        description="Five shelves, some scratches",
        attributes={"category": "furniture"},
    )
    await db_session.commit()
    return lst
