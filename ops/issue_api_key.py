"""
Operator tool: issue or revoke the API key a user signs requests with.

Identity lives outside this service; this is how an operator (or the
identity service's provisioning job) hands a user id its X-API-Key.

    python -m ops.issue_api_key issue usr_123
    python -m ops.issue_api_key revoke usr_123
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy import update

from reloop.core.db import SessionLocal, engine
from reloop.core.ids import utcnow
from reloop.core.security import generate_api_key
from reloop.models.api_key import ApiKey


async def issue(user_id: str) -> str:
    key = generate_api_key()
    async with SessionLocal() as db:
        db.add(ApiKey(user_id=user_id, key_prefix=key.prefix, key_hash=key.hashed, is_active=True))
        await db.commit()
    return key.plain


async def revoke(user_id: str) -> int:
    async with SessionLocal() as db:
        result = await db.execute(
            update(ApiKey)
            .where(ApiKey.user_id == user_id, ApiKey.is_active.is_(True))
            .values(is_active=False, rotated_at=utcnow())
        )
        await db.commit()
    return int(result.rowcount or 0)


async def _main(args: argparse.Namespace) -> int:
    try:
        if args.command == "issue":
            print(await issue(args.user_id))
        else:
            n = await revoke(args.user_id)
            print(f"revoked {n} key(s) for {args.user_id}", file=sys.stderr)
    finally:
        await engine.dispose()
    return 0


def main() -> int:
    ap = argparse.ArgumentParser(description="Issue or revoke user API keys.")
    ap.add_argument("command", choices=["issue", "revoke"])
    ap.add_argument("user_id")
    return asyncio.run(_main(ap.parse_args()))


if __name__ == "__main__":
    raise SystemExit(main())
