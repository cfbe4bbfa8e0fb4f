# app/services/bookings.py
"""
Ciclo de vida de las reservas: alta, cambios de estado y listados.

Flujo de un cambio de estado:
    validar (actor, transición, herramienta) → update condicionado al estado
    previo → [PICKED y nómada] portador + propagación → notificaciones.
Los pasos ya confirmados en la base de datos no se deshacen si falla uno
posterior; la propagación es idempotente y se puede relanzar.
"""
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..config import get_settings
from ..domain.booking_state import (
    COMMITTED,
    BookingStatus,
    Role,
    assert_transition,
    parse_status,
    required_role,
    role_of,
)
from ..domain.temporal import DateRange
from ..errors import (
    BookingDatesConflictError,
    ForbiddenError,
    InactiveUserError,
    NotCommunityMemberError,
    NotFoundError,
    OutOfRangeError,
    StaleStatusError,
    ToolNotNomadicError,
    ValidationError,
)
from ..utils import to_object_id
from . import tools as tool_store
from . import users as user_store
from .booking_repository import BookingFilter, BookingPage, BookingRepository, CasOutcome, Direction
from .conflicts import assert_no_conflict
from .nomadic import assign_holder, propagate_holder
from .notifications import NotificationDispatcher, NotificationType, get_dispatcher, notify
from .ratings import pending_rating_query

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]


# ==================== Alta ====================

async def create_booking(
    db: AsyncIOMotorDatabase,
    tool_id: str,
    requester_id: str,
    date_range: DateRange,
    contact: str = "",
    comments: str = "",
    today: Optional[date] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Doc:
    today = today or datetime.utcnow().date()
    if date_range.start < today:
        raise ValidationError("start_date no puede ser anterior a hoy")

    tool = await tool_store.get_tool(db, tool_id)
    requester = await user_store.get_user(db, requester_id)
    recipient_id = tool_store.current_recipient(tool)
    recipient = await user_store.get_user(db, recipient_id)

    if not user_store.is_active(requester):
        raise InactiveUserError("El usuario solicitante está inactivo")
    if not user_store.is_active(recipient):
        raise InactiveUserError("El usuario destinatario está inactivo")

    communities = tool.get("communities") or []
    if communities and not user_store.is_member_of_any(requester, communities):
        raise NotCommunityMemberError()

    max_km = tool.get("max_distance_km") or 0
    if max_km > 0 and not user_store.within_distance(requester, tool.get("location"), max_km):
        raise OutOfRangeError(f"La herramienta está demasiado lejos (máximo {max_km} km)")

    # Solo bloquean las reservas ya aceptadas; las PENDING pueden solaparse
    await assert_no_conflict(db, tool_id, date_range)

    start, end = date_range.bounds()
    now = datetime.utcnow()
    doc = {
        "tool_id": str(tool["_id"]),
        "from_user_id": requester_id,
        "to_user_id": recipient_id,
        "start_date": start,
        "end_date": end,
        "contact": contact or "",
        "comments": comments or "",
        "status": BookingStatus.pending.value,
        "is_nomadic": bool(tool.get("is_nomadic")),
        "created_at": now,
        "updated_at": now,
    }
    booking = await BookingRepository(db).insert(doc)
    logger.info(f"Reserva {booking['_id']} creada: herramienta {tool_id}, {requester_id} → {recipient_id}")

    await notify(dispatcher or get_dispatcher(db), recipient, NotificationType.new_incoming_request, {
        "tool_name": tool.get("title") or "",
        "user_name": user_store.display_name(requester),
        "user_rating": requester.get("rating"),
        "from_date": date_range.start.isoformat(),
        "to_date": date_range.end.isoformat(),
        "comment": doc["comments"],
        "way_of_contact": doc["contact"],
        "booking_id": str(booking["_id"]),
    })
    return booking


# ==================== Lecturas ====================

async def get_booking(db: AsyncIOMotorDatabase, booking_id: str, actor_id: Optional[str] = None) -> Doc:
    oid = to_object_id(booking_id, "booking_id")
    booking = await BookingRepository(db).get(oid)
    if not booking:
        raise NotFoundError("Reserva", booking_id)
    if actor_id is not None and not role_of(booking, actor_id):
        raise ForbiddenError("Sin acceso a esta reserva")
    return booking


def _page_args(page: Optional[int], page_size: Optional[int]) -> tuple[int, int]:
    s = get_settings()
    page = page or 1
    page_size = page_size or s.default_page_size
    if page < 1 or page_size < 1:
        raise ValidationError("Parámetros de paginación inválidos")
    return page, min(page_size, s.max_page_size)


async def list_bookings(
    db: AsyncIOMotorDatabase,
    flt: BookingFilter,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> BookingPage:
    if not flt.tool_id and not flt.user_id:
        raise ValidationError("Hace falta tool_id o user_id")
    page, page_size = _page_args(page, page_size)
    return await BookingRepository(db).list_page(flt, page, page_size)


async def list_requests(
    db: AsyncIOMotorDatabase,
    user_id: str,
    direction: Direction,
    statuses: Optional[Iterable[BookingStatus]] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> BookingPage:
    flt = BookingFilter(user_id=user_id, direction=direction, statuses=set(statuses) if statuses else None)
    return await list_bookings(db, flt, page, page_size)


async def count_pending_actions(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, int]:
    repo = BookingRepository(db)
    return {
        "pending_ratings_count": await repo.count(pending_rating_query(user_id)),
        "pending_requests_count": await repo.count(
            {"to_user_id": user_id, "status": BookingStatus.pending.value}
        ),
    }


# ==================== Cambios de estado ====================

def _authorize(booking: Doc, actor_id: str, target: BookingStatus) -> None:
    role = required_role(target)
    if role not in role_of(booking, actor_id):
        if role == Role.requester:
            raise ForbiddenError("Solo el solicitante puede cancelar la reserva")
        raise ForbiddenError("Solo el destinatario de la reserva puede cambiar su estado")


async def _cas(repo: BookingRepository, booking: Doc, target: BookingStatus, extra: Optional[Doc] = None) -> Doc:
    current = parse_status(booking["status"])
    outcome, doc = await repo.compare_and_set_status(booking["_id"], current, target, extra)
    if outcome == CasOutcome.not_found:
        raise NotFoundError("Reserva", str(booking["_id"]))
    if outcome == CasOutcome.not_applied:
        raise StaleStatusError(
            f"La reserva pasó a {doc['status']} mientras se procesaba {current.value} → {target.value}"
        )
    return doc


async def update_status(
    db: AsyncIOMotorDatabase,
    booking_id: str,
    actor_id: str,
    new_status: Any,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> Doc:
    target = parse_status(new_status)
    oid = to_object_id(booking_id, "booking_id")
    repo = BookingRepository(db)
    booking = await repo.get(oid)
    if not booking:
        raise NotFoundError("Reserva", booking_id)

    current = parse_status(booking["status"])
    _authorize(booking, actor_id, target)
    dispatcher = dispatcher or get_dispatcher(db)

    # Reintento de una recogida que quedó a medias: se rehace la propagación
    if current == BookingStatus.picked and target == BookingStatus.picked:
        tool = await tool_store.get_tool(db, booking["tool_id"])
        await _after_picked(db, tool, booking, dispatcher, now)
        return await repo.get(oid)

    assert_transition(current, target)

    if target == BookingStatus.accepted:
        updated = await _accept(db, repo, booking)
        await _notify_accepted(db, dispatcher, updated, actor_id)
    elif target == BookingStatus.picked:
        tool = await tool_store.get_tool(db, booking["tool_id"])
        if not tool.get("is_nomadic"):
            raise ToolNotNomadicError()
        updated = await _cas(repo, booking, target)
        await _after_picked(db, tool, updated, dispatcher, now)
    elif target in (BookingStatus.returned, BookingStatus.cancelled):
        updated = await _cas(repo, booking, target)
        if current in (BookingStatus.accepted, BookingStatus.picked):
            await tool_store.release_dates(db, booking["tool_id"], oid)
    else:
        updated = await _cas(repo, booking, target)

    logger.info(f"Reserva {booking_id}: {current.value} → {target.value} por {actor_id}")
    return updated


async def _accept(db: AsyncIOMotorDatabase, repo: BookingRepository, booking: Doc) -> Doc:
    tool_id = booking["tool_id"]
    date_range = DateRange.from_doc(booking)
    tool = await tool_store.get_tool(db, tool_id)
    await assert_no_conflict(db, tool_id, date_range, exclude_id=booking["_id"])

    # La reserva de fechas en la herramienta es el guardián atómico frente a
    # dos aceptaciones simultáneas de reservas solapadas
    if not await tool_store.reserve_dates(db, tool_id, booking["_id"], date_range):
        raise BookingDatesConflictError()
    try:
        # El lugar de recogida se fija junto con el cambio de estado
        accepted = await _cas(repo, booking, BookingStatus.accepted, {"pickup_place": tool.get("location")})
    except (StaleStatusError, NotFoundError):
        # Si otra petición aceptó esta misma reserva, la entrada es suya
        latest = await repo.get(booking["_id"])
        if latest is None or parse_status(latest["status"]) not in COMMITTED:
            await tool_store.release_dates(db, tool_id, booking["_id"])
        raise

    if not tool.get("is_nomadic"):
        await _move_karma(db, accepted, date_range)
    return accepted


def karma_days(date_range: DateRange) -> int:
    """Días entre recogida y devolución; una reserva de un solo día cuenta como 1."""
    return max(1, (date_range.end - date_range.start).days)


async def _move_karma(db: AsyncIOMotorDatabase, booking: Doc, date_range: DateRange) -> None:
    """Quien presta gana karma y quien pide lo gasta. Un fallo aquí no deshace la aceptación."""
    days = karma_days(date_range)
    for user_id, delta in ((booking["to_user_id"], days), (booking["from_user_id"], -days)):
        try:
            await user_store.add_karma(db, str(user_id), delta)
        except Exception as e:
            logger.error(f"No se pudo aplicar karma {delta:+d} al usuario {user_id}: {e}", exc_info=True)


async def _after_picked(
    db: AsyncIOMotorDatabase,
    tool: Doc,
    picked: Doc,
    dispatcher: NotificationDispatcher,
    now: Optional[datetime],
) -> None:
    try:
        new_holder = await user_store.get_user(db, str(picked["from_user_id"]))
    except NotFoundError:
        new_holder = None
    # Primero el puntero de la herramienta, después las reservas
    await assign_holder(db, tool, picked, new_holder)
    await propagate_holder(db, tool, picked, now=now, dispatcher=dispatcher, new_holder=new_holder)


async def _notify_accepted(db: AsyncIOMotorDatabase, dispatcher: NotificationDispatcher, booking: Doc, actor_id: str) -> None:
    try:
        requester = await user_store.get_user(db, str(booking["from_user_id"]))
        owner = await user_store.get_user(db, actor_id)
        tool = await tool_store.get_tool(db, booking["tool_id"])
    except Exception as e:
        logger.error(f"Aviso de aceptación omitido para la reserva {booking['_id']}: {e}", exc_info=True)
        return
    date_range = DateRange.from_doc(booking)
    await notify(dispatcher, requester, NotificationType.booking_accepted, {
        "tool_name": tool.get("title") or "",
        "from_date": date_range.start.isoformat(),
        "to_date": date_range.end.isoformat(),
        "user_name": user_store.display_name(owner),
        "user_rating": owner.get("rating"),
        "booking_id": str(booking["_id"]),
    })
