"""Detección de solapes entre reservas comprometidas de una herramienta."""
import logging
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..domain.booking_state import COMMITTED
from ..domain.temporal import DateRange
from ..errors import BookingDatesConflictError
from .booking_repository import BookingRepository

logger = logging.getLogger(__name__)


async def has_conflict(
    db: AsyncIOMotorDatabase,
    tool_id: str,
    date_range: DateRange,
    exclude_id: Optional[ObjectId] = None,
) -> bool:
    """
    True si alguna reserva ACCEPTED/PICKED de la herramienta se solapa con
    `date_range`. Las PENDING nunca cuentan.
    """
    overlapping = await BookingRepository(db).find_overlapping(tool_id, date_range, COMMITTED, exclude_id)
    # La consulta ya filtra por fechas; se revalida con la regla de dominio
    return any(date_range.overlaps(DateRange.from_doc(b)) for b in overlapping)


async def assert_no_conflict(
    db: AsyncIOMotorDatabase,
    tool_id: str,
    date_range: DateRange,
    exclude_id: Optional[ObjectId] = None,
) -> None:
    if await has_conflict(db, tool_id, date_range, exclude_id):
        logger.info(f"Solape en herramienta {tool_id} para {date_range.start}..{date_range.end}")
        raise BookingDatesConflictError()
