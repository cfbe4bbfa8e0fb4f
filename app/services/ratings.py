"""
Valoraciones de reservas y reputación de los usuarios.

Cada parte puede valorar una vez por reserva. La valoración se guarda embebida
en la reserva (`ratings.owner` / `ratings.requester`) con un update
condicionado a que esa parte no haya valorado ya; después se recalcula la
reputación del valorado a partir de todas las valoraciones que ha recibido.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import logging
import math

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..domain.booking_state import RATEABLE, parse_status
from ..errors import (
    AlreadyRatedError,
    ConflictError,
    ForbiddenError,
    InvalidBookingStatus,
    NotFoundError,
    ValidationError,
)
from ..utils import to_object_id, validate_image_hashes
from . import tools as tool_store
from . import users as user_store
from .booking_repository import BookingRepository

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]

# Relecturas ante escrituras concurrentes de la misma reputación
FOLD_ATTEMPTS = 5


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def compute_reputation(scores: Sequence[int]) -> int:
    """Media de estrellas (1-5) expresada en porcentaje: 1 → 20, 5 → 100."""
    if not scores:
        return 0
    # 100·media/5 sin pasar por la media en coma flotante
    return round_half_up(sum(scores) * 100 / (5 * len(scores)))


def validate_score(score: Any) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError("La puntuación debe ser un entero")
    if score < 1 or score > 5:
        raise ValidationError("La puntuación debe estar entre 1 y 5")
    return score


def side_of(booking: Doc, user_id: str) -> Optional[str]:
    """`owner` si valora el destinatario de la reserva, `requester` si el solicitante."""
    if str(booking.get("to_user_id")) == user_id:
        return "owner"
    if str(booking.get("from_user_id")) == user_id:
        return "requester"
    return None


def counterparty(booking: Doc, side: str) -> str:
    return str(booking["from_user_id"] if side == "owner" else booking["to_user_id"])


async def submit_rating(
    db: AsyncIOMotorDatabase,
    booking_id: str,
    actor_id: str,
    score: Any,
    comment: Optional[str] = None,
    images: Optional[List[str]] = None,
) -> Doc:
    oid = to_object_id(booking_id, "booking_id")
    score = validate_score(score)
    image_hashes = validate_image_hashes(images)

    repo = BookingRepository(db)
    booking = await repo.get(oid)
    if not booking:
        raise NotFoundError("Reserva", booking_id)

    status = parse_status(booking.get("status"))
    if status not in RATEABLE:
        raise InvalidBookingStatus(f"La reserva debe estar RETURNED o PICKED. Estado actual: {status.value}")

    side = side_of(booking, actor_id)
    if side is None:
        raise ForbiddenError("El usuario no participa en esta reserva")

    target_id = counterparty(booking, side)
    entry = {
        "from_user_id": actor_id,
        "to_user_id": target_id,
        "rating": score,
        "comment": (comment or "").strip(),
        "images": image_hashes,
        "rated_at": datetime.utcnow(),
    }
    updated = await repo.set_rating_once(oid, side, entry)
    if updated is None:
        if await repo.get(oid) is None:
            raise NotFoundError("Reserva", booking_id)
        raise AlreadyRatedError()

    logger.info(f"Reserva {booking_id}: valoración {score} de {actor_id} a {target_id}")

    reputation, count = await refresh_reputation(db, target_id)
    logger.info(f"Usuario {target_id}: reputación {reputation} ({count} valoraciones)")

    if side == "requester":
        await refresh_tool_rating(db, str(booking["tool_id"]))

    return {"booking_id": booking_id, "side": side, **entry}


async def refresh_reputation(db: AsyncIOMotorDatabase, user_id: str) -> tuple[int, int]:
    """
    Recalcula desde cero con todas las valoraciones recibidas; nunca una media
    incremental. La escritura va condicionada a `rating_version`: si otra
    valoración del mismo usuario se escribió entre la lectura y el update, se
    vuelve a plegar con el conjunto ya completo.
    """
    repo = BookingRepository(db)
    for attempt in range(1, FOLD_ATTEMPTS + 1):
        user = await user_store.get_user(db, user_id)
        version = int(user.get("rating_version") or 0)
        # La versión se lee antes que las puntuaciones
        scores = await repo.received_scores(user_id)
        reputation = compute_reputation(scores)
        if await user_store.set_reputation(db, user_id, reputation, len(scores), version):
            return reputation, len(scores)
        logger.info(f"Usuario {user_id}: reputación modificada en paralelo, se recalcula (intento {attempt})")
    raise ConflictError(f"No se pudo actualizar la reputación del usuario {user_id}")


async def refresh_tool_rating(db: AsyncIOMotorDatabase, tool_id: str) -> Optional[int]:
    repo = BookingRepository(db)
    for attempt in range(1, FOLD_ATTEMPTS + 1):
        tool = await tool_store.get_tool(db, tool_id)
        version = int(tool.get("rating_version") or 0)
        scores = await repo.tool_scores(tool_id)
        if not scores:
            return None
        rating = round_half_up(sum(scores) / len(scores))
        if await tool_store.set_rating(db, tool_id, rating, version):
            return rating
        logger.info(f"Herramienta {tool_id}: nota modificada en paralelo, se recalcula (intento {attempt})")
    raise ConflictError(f"No se pudo actualizar la nota de la herramienta {tool_id}")


def _party(booking: Doc, side: str) -> Doc:
    entry = (booking.get("ratings") or {}).get(side)
    user_id = booking["to_user_id"] if side == "owner" else booking["from_user_id"]
    party: Doc = {"id": str(user_id)}
    if entry:
        party.update({
            "rating": entry["rating"],
            "comment": entry.get("comment") or "",
            "images": entry.get("images") or [],
            "rated_at": entry.get("rated_at"),
        })
    return party


async def get_booking_ratings(db: AsyncIOMotorDatabase, booking_id: str, actor_id: str) -> Doc:
    """Vista unificada de las dos valoraciones de una reserva."""
    oid = to_object_id(booking_id, "booking_id")
    booking = await BookingRepository(db).get(oid)
    if not booking:
        raise NotFoundError("Reserva", booking_id)
    if side_of(booking, actor_id) is None:
        raise ForbiddenError("Sin acceso a esta reserva")
    return {
        "booking_id": booking_id,
        "owner": _party(booking, "owner"),
        "requester": _party(booking, "requester"),
    }


def pending_rating_query(user_id: str) -> Doc:
    statuses = [s.value for s in RATEABLE]
    return {
        "status": {"$in": statuses},
        "$or": [
            {"to_user_id": user_id, "ratings.owner": {"$exists": False}},
            {"from_user_id": user_id, "ratings.requester": {"$exists": False}},
        ],
    }


async def list_pending_ratings(db: AsyncIOMotorDatabase, user_id: str) -> List[Doc]:
    """Reservas terminadas en las que el usuario aún no ha dejado su valoración."""
    repo = BookingRepository(db)
    return await repo.find(pending_rating_query(user_id), sort=[("created_at", -1), ("_id", -1)])


def is_rated_by(booking: Doc, user_id: str) -> bool:
    side = side_of(booking, user_id)
    if side is None or parse_status(booking.get("status")) not in RATEABLE:
        return False
    return side in (booking.get("ratings") or {})
