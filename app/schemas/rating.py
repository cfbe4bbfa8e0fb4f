from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from .booking import RatingPartyOut


class RatingCreate(BaseModel):
    rating: int = Field(description="Estrellas de 1 a 5")
    comment: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Hashes de contenido de las imágenes")


class RatingOut(BaseModel):
    booking_id: str
    side: str  # owner | requester
    from_user_id: str
    to_user_id: str
    rating: int
    comment: str = ""
    images: List[str] = []
    rated_at: datetime


class BookingRatingsOut(BaseModel):
    booking_id: str
    owner: RatingPartyOut
    requester: RatingPartyOut
