from pydantic import BaseModel, Field, field_validator
from datetime import date, datetime
from typing import Dict, List, Optional

from ..domain.booking_state import BookingStatus


class BookingCreate(BaseModel):
    tool_id: str = Field(..., pattern=r"^[0-9a-fA-F]{24}$")
    start_date: date
    end_date: date
    contact: str = ""
    comments: str = ""

    @field_validator("end_date")
    @classmethod
    def validate_end(cls, v: date, info) -> date:
        start = info.data.get("start_date")
        if start and v < start:
            raise ValueError("end_date debe ser igual o posterior a start_date")
        return v


class RatingPartyOut(BaseModel):
    id: str
    rating: Optional[int] = None
    comment: Optional[str] = None
    images: List[str] = []
    rated_at: Optional[datetime] = None


class BookingOut(BaseModel):
    id: str
    tool_id: str
    from_user_id: str
    to_user_id: str
    start_date: date
    end_date: date
    contact: str = ""
    comments: str = ""
    status: BookingStatus
    is_nomadic: bool = False
    pickup_place: Optional[Dict[str, float]] = None
    is_rated: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None


class BookingPageOut(BaseModel):
    items: List[BookingOut]
    total: int
    page: int
    page_size: int
    pending_total: int = 0


class StatusPatch(BaseModel):
    status: BookingStatus


class PendingActionsOut(BaseModel):
    pending_ratings_count: int
    pending_requests_count: int
