# app/routers/bookings.py
from fastapi import APIRouter, Depends, status, Path, Request, Query
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
import logging

from ..db import get_db
from ..domain.booking_state import parse_status
from ..domain.temporal import DateRange, to_date
from ..schemas.booking import BookingCreate, BookingOut, BookingPageOut, PendingActionsOut, StatusPatch
from ..security import get_current_user
from ..services import bookings as booking_service
from ..services.booking_repository import BookingPage, Direction
from ..services.ratings import is_rated_by, list_pending_ratings
from ..utils import to_id
from ..middleware.rate_limit import apply_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()

BOOKING_ID = Path(..., pattern=r"^[0-9a-fA-F]{24}$")


def _to_out(doc: dict, viewer_id: Optional[str] = None) -> dict:
    d = to_id(doc)
    d["start_date"] = to_date(doc["start_date"])
    d["end_date"] = to_date(doc["end_date"])
    d["created_at"] = doc.get("created_at")
    d["updated_at"] = doc.get("updated_at")
    d["is_rated"] = is_rated_by(doc, viewer_id) if viewer_id else False
    d.pop("ratings", None)
    return d


def _page_out(p: BookingPage, viewer_id: str) -> dict:
    return {
        "items": [_to_out(b, viewer_id) for b in p.items],
        "total": p.total,
        "page": p.page,
        "page_size": p.page_size,
        "pending_total": p.pending_total,
    }


def _status_set(raw: Optional[List[str]]):
    return {parse_status(s) for s in raw} if raw else None

# ---------- Endpoints ----------

@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: Request,
    payload: BookingCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    apply_rate_limit(request, "15/minute")
    booking = await booking_service.create_booking(
        db,
        payload.tool_id,
        current["id"],
        DateRange(payload.start_date, payload.end_date),
        contact=payload.contact,
        comments=payload.comments,
    )
    return _to_out(booking, current["id"])


@router.get("/requests/incoming", response_model=BookingPageOut)
async def list_incoming_requests(
    status_filter: Optional[List[str]] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    p = await booking_service.list_requests(
        db, current["id"], Direction.incoming, _status_set(status_filter), page, page_size
    )
    return _page_out(p, current["id"])


@router.get("/requests/outgoing", response_model=BookingPageOut)
async def list_outgoing_requests(
    status_filter: Optional[List[str]] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    p = await booking_service.list_requests(
        db, current["id"], Direction.outgoing, _status_set(status_filter), page, page_size
    )
    return _page_out(p, current["id"])


@router.get("/pending-actions", response_model=PendingActionsOut)
async def pending_actions(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    return await booking_service.count_pending_actions(db, current["id"])


@router.get("/ratings/pending", response_model=List[BookingOut])
async def pending_ratings(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    docs = await list_pending_ratings(db, current["id"])
    return [_to_out(d, current["id"]) for d in docs]


@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking(
    booking_id: str = BOOKING_ID,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    b = await booking_service.get_booking(db, booking_id, current["id"])
    return _to_out(b, current["id"])


@router.put("/{booking_id}", response_model=BookingOut)
async def update_status(
    body: StatusPatch,
    booking_id: str = BOOKING_ID,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current=Depends(get_current_user),
):
    updated = await booking_service.update_status(db, booking_id, current["id"], body.status)
    return _to_out(updated, current["id"])
