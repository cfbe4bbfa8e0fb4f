from fastapi import APIRouter, Depends, Path, Request, status
from motor.motor_asyncio import AsyncIOMotorDatabase
import logging

from ..db import get_db
from ..schemas.rating import RatingCreate, RatingOut, BookingRatingsOut
from ..security import get_current_user
from ..services import ratings as rating_service
from ..middleware.rate_limit import apply_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{booking_id}/ratings", response_model=RatingOut, status_code=status.HTTP_201_CREATED)
async def rate_booking(
    request: Request,
    payload: RatingCreate,
    booking_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$"),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    """
    Valora a la otra parte de una reserva RETURNED o PICKED.
    Solo se admite una valoración por parte y reserva.
    """
    apply_rate_limit(request, "10/minute")
    return await rating_service.submit_rating(
        db,
        booking_id,
        current["id"],
        payload.rating,
        comment=payload.comment,
        images=payload.images,
    )


@router.get("/{booking_id}/ratings", response_model=BookingRatingsOut)
async def get_booking_ratings(
    booking_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$"),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    return await rating_service.get_booking_ratings(db, booking_id, current["id"])
