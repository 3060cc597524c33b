from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.db import get_db
from reloop.schemas.listing import summarize
from reloop.schemas.transaction import TransactionOut
from reloop.services import ledger
from reloop.services.auth import Viewer, get_viewer

router = APIRouter()


@router.get("/transactions", response_model=list[TransactionOut])
async def list_transactions(
    role: str = Query(pattern="^(given|received)$"),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> list[TransactionOut]:
    rows = await ledger.list_transactions(db, user_id=viewer.user_id, role=role)
    return [
        TransactionOut(
            id=t.id,
            listing_id=t.listing_id,
            from_party=t.from_party,
            to_party=t.to_party,
            completed_at=t.completed_at,
            listing=summarize(lst),
        )
        for t, lst in rows
    ]
