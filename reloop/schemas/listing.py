from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


Intent = Literal["give", "swap", "sell", "request", "rehome"]


class ListingCreate(BaseModel):
    intent: Intent
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=10000)
    # category, location, images... owned by other services, opaque here
    attributes: dict = Field(default_factory=dict)


class ListingSummary(BaseModel):
    id: str
    owner_id: str
    title: str
    intent: str
    status: str


class ListingOut(BaseModel):
    id: str
    owner_id: str
    intent: str
    status: str
    title: str
    description: str
    attributes: dict
    view_count: int
    created_at: datetime


class ViewOut(BaseModel):
    counted: bool


def summarize(listing) -> ListingSummary:
    return ListingSummary(
        id=listing.id,
        owner_id=listing.owner_id,
        title=listing.title,
        intent=listing.intent,
        status=listing.status,
    )
