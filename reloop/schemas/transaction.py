from datetime import datetime

from pydantic import BaseModel

from reloop.schemas.listing import ListingSummary


class TransactionOut(BaseModel):
    id: str
    listing_id: str
    from_party: str
    to_party: str
    completed_at: datetime
    listing: ListingSummary
