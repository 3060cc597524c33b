from pydantic import BaseModel, Field


class StatusOut(BaseModel):
    status: str


class ErrorBody(BaseModel):
    code: str
    message: str
    category: str
    details: list[dict] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: ErrorBody
