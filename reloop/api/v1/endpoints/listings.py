from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.config import settings
from reloop.core.db import get_db
from reloop.core.deadline import within_deadline
from reloop.models.listing import Listing
from reloop.schemas.listing import Intent, ListingCreate, ListingOut, ViewOut
from reloop.services import agreements as agreement_service
from reloop.services import listings as listing_service
from reloop.services.auth import Viewer, get_optional_viewer, get_viewer
from reloop.services.rate_limit import FixedWindowLimiter

router = APIRouter()


def get_view_limiter(request: Request) -> FixedWindowLimiter | None:
    return getattr(request.app.state, "view_limiter", None)


def _out(listing: Listing) -> ListingOut:
    return ListingOut(
        id=listing.id,
        owner_id=listing.owner_id,
        intent=listing.intent,
        status=listing.status,
        title=listing.title,
        description=listing.description,
        attributes=listing.attributes,
        view_count=listing.view_count,
        created_at=listing.created_at,
    )


@router.post("/listings", response_model=ListingOut, status_code=201)
async def create_listing(
    payload: ListingCreate,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await listing_service.create_listing(
        db,
        owner_id=viewer.user_id,
        intent=payload.intent,
        title=payload.title,
        description=payload.description,
        attributes=payload.attributes,
    )
    await db.commit()
    return _out(listing)


@router.get("/listings", response_model=list[ListingOut])
async def browse_listings(
    intent: Intent | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> list[ListingOut]:
    rows = await listing_service.browse_active(db, intent=intent, limit=limit, offset=offset)
    return [_out(lst) for lst in rows]


@router.get("/listings/mine", response_model=list[ListingOut])
async def my_listings(
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> list[ListingOut]:
    rows = await listing_service.list_owned(db, owner_id=viewer.user_id)
    return [_out(lst) for lst in rows]


@router.get("/listings/{listing_id}", response_model=ListingOut)
async def get_listing(listing_id: str, db: AsyncSession = Depends(get_db)) -> ListingOut:
    return _out(await listing_service.get_listing(db, listing_id))


@router.delete("/listings/{listing_id}", response_model=ListingOut)
async def remove_listing(
    listing_id: str,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await within_deadline(
        agreement_service.remove_listing(db, owner_id=viewer.user_id, listing_id=listing_id)
    )
    await db.commit()
    return _out(listing)


@router.post("/listings/{listing_id}/view", response_model=ViewOut)
async def record_view(
    listing_id: str,
    request: Request,
    viewer: Viewer | None = Depends(get_optional_viewer),
    limiter: FixedWindowLimiter | None = Depends(get_view_limiter),
    db: AsyncSession = Depends(get_db),
) -> ViewOut:
    counted = await listing_service.record_view(
        db,
        listing_id=listing_id,
        viewer_id=viewer.user_id if viewer else None,
        client_ip=request.client.host if request.client else None,
        dedupe_hours=settings.view_dedupe_hours,
        limiter=limiter,
    )
    await db.commit()
    return ViewOut(counted=counted)
