from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from reloop.schemas.listing import ListingSummary


class AgreementCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    listing_id: str = Field(alias="listingId", min_length=1)
    counterparty_id: str = Field(alias="counterpartyId", min_length=1)


class AgreementCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agreement_id: str = Field(alias="agreementId")


class AgreementResolve(BaseModel):
    outcome: Literal["accept", "decline", "withdraw", "confirm"]


class AgreementOut(BaseModel):
    id: str
    listing_id: str
    proposer_id: str
    counterparty_id: str
    conversation_id: str | None
    status: str
    outcome: str | None
    created_at: datetime
    resolved_at: datetime | None
    listing: ListingSummary


class ResolutionOut(BaseModel):
    agreement: AgreementOut
    listing_status: str
    transaction_id: str | None
