from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.db import get_db
from reloop.schemas.common import StatusOut

router = APIRouter()


@router.get("/health", response_model=StatusOut)
async def health(db: AsyncSession = Depends(get_db)) -> StatusOut:
    await db.execute(text("SELECT 1"))
    return StatusOut(status="ok")
