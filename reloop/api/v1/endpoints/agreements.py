from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.db import get_db
from reloop.core.deadline import within_deadline
from reloop.models.agreement import Agreement
from reloop.models.listing import Listing
from reloop.schemas.agreement import (
    AgreementCreate,
    AgreementCreated,
    AgreementOut,
    AgreementResolve,
    ResolutionOut,
)
from reloop.schemas.listing import summarize
from reloop.services import agreements as agreement_service
from reloop.services.auth import Viewer, get_viewer
from reloop.services.idempotency import (
    find_idempotent_response,
    optional_idempotency_key,
    store_idempotency_response,
)

router = APIRouter()


def _out(a: Agreement, listing: Listing) -> AgreementOut:
    return AgreementOut(
        id=a.id,
        listing_id=a.listing_id,
        proposer_id=a.proposer_id,
        counterparty_id=a.counterparty_id,
        conversation_id=a.conversation_id,
        status=a.status,
        outcome=a.outcome,
        created_at=a.created_at,
        resolved_at=a.resolved_at,
        listing=summarize(listing),
    )


@router.post("/agreements", response_model=AgreementCreated, status_code=201, response_model_by_alias=True)
async def propose_agreement(
    payload: AgreementCreate,
    request: Request,
    viewer: Viewer = Depends(get_viewer),
    idem_key: str | None = Depends(optional_idempotency_key),
    db: AsyncSession = Depends(get_db),
) -> AgreementCreated:
    body = payload.model_dump()
    if idem_key:
        cached = await find_idempotent_response(
            db=db,
            user_id=viewer.user_id,
            idempotency_key=idem_key,
            request_path=request.url.path,
            request_body=body,
        )
        if cached is not None:
            return AgreementCreated(**cached)

    agreement = await within_deadline(
        agreement_service.propose(
            db,
            proposer_id=viewer.user_id,
            listing_id=payload.listing_id,
            counterparty_id=payload.counterparty_id,
        )
    )
    resp = AgreementCreated(agreement_id=agreement.id)

    if idem_key:
        await store_idempotency_response(
            db=db,
            user_id=viewer.user_id,
            idempotency_key=idem_key,
            request_path=request.url.path,
            request_body=body,
            response=resp.model_dump(),
        )

    await db.commit()
    return resp


@router.get("/agreements", response_model=list[AgreementOut])
async def list_agreements(
    role: str = Query(default="all", pattern="^(sent|received|all)$"),
    status: str | None = Query(default=None, pattern="^(pending|accepted|declined|withdrawn)$"),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> list[AgreementOut]:
    rows = await agreement_service.list_agreements(db, user_id=viewer.user_id, role=role, status=status)
    return [_out(a, lst) for a, lst in rows]


@router.post("/agreements/{agreement_id}/resolve", response_model=ResolutionOut)
async def resolve_agreement(
    agreement_id: str,
    payload: AgreementResolve,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> ResolutionOut:
    res = await within_deadline(
        agreement_service.resolve(
            db,
            actor_id=viewer.user_id,
            agreement_id=agreement_id,
            outcome=payload.outcome,
        )
    )
    await db.commit()
    return ResolutionOut(
        agreement=_out(res.agreement, res.listing),
        listing_status=res.listing.status,
        transaction_id=res.transaction_id,
    )
