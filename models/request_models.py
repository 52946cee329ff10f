from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RequestKind(str, Enum):
    FREE = "free"
    EXCHANGE = "exchange"


class CreateRequestModel(BaseModel):
    book: str = Field(min_length=1)
    type: RequestKind
    offeredBooks: Optional[str] = None


class UpdateRequestModel(BaseModel):
    status: RequestStatus


class RateRequestModel(BaseModel):
    rating: float = Field(ge=1, le=5)
    review: Optional[str] = Field(default=None, max_length=500)
