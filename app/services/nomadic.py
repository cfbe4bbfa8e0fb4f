"""
Propagación del portador de herramientas nómadas.

Cuando una reserva de una herramienta nómada pasa a PICKED, el solicitante se
convierte en el nuevo portador: primero se actualiza el puntero de la
herramienta y después se reasignan las reservas futuras abiertas (PENDING y
ACCEPTED) para que vayan dirigidas a él. Todo el proceso es idempotente, así que
ante un fallo parcial basta con volver a ejecutarlo.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import NotFoundError
from . import tools as tool_store
from . import users as user_store
from .booking_repository import BookingRepository
from .notifications import NotificationDispatcher, NotificationType, get_dispatcher, notify

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]


async def assign_holder(db: AsyncIOMotorDatabase, tool: Doc, picked: Doc, new_holder: Optional[Doc] = None) -> None:
    """Apunta la herramienta al solicitante de la reserva recogida."""
    holder_id = str(picked["from_user_id"])
    location = (new_holder or {}).get("location")
    await tool_store.set_actual_holder(db, str(tool["_id"]), holder_id, location)
    try:
        await tool_store.add_holder_history(db, str(tool["_id"]), holder_id, picked["_id"])
    except Exception as e:
        logger.error(f"No se pudo registrar el historial de la herramienta {tool['_id']}: {e}", exc_info=True)


async def propagate_holder(
    db: AsyncIOMotorDatabase,
    tool: Doc,
    picked: Doc,
    now: Optional[datetime] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    new_holder: Optional[Doc] = None,
) -> List[Doc]:
    """
    Reescribe to_user_id de las demás reservas futuras y abiertas de la
    herramienta y avisa a sus solicitantes. Devuelve las reservas afectadas.
    La reserva recogida no se toca.
    """
    now = now or datetime.utcnow()
    holder_id = str(picked["from_user_id"])
    tool_id = str(tool["_id"])

    affected = await BookingRepository(db).rewrite_recipient(tool_id, picked["_id"], holder_id, now)
    if not affected:
        logger.info(f"Herramienta {tool_id}: sin reservas futuras que reasignar")
        return []
    logger.info(f"Herramienta {tool_id}: {len(affected)} reservas reasignadas a {holder_id}")

    if new_holder is None:
        try:
            new_holder = await user_store.get_user(db, holder_id)
        except NotFoundError:
            new_holder = {"_id": holder_id}
    dispatcher = dispatcher or get_dispatcher(db)
    for b in affected:
        await _notify_requester(db, dispatcher, tool, new_holder, b)
    return affected


async def _notify_requester(
    db: AsyncIOMotorDatabase,
    dispatcher: NotificationDispatcher,
    tool: Doc,
    new_holder: Doc,
    booking: Doc,
) -> None:
    try:
        requester = await user_store.get_user(db, str(booking["from_user_id"]))
    except Exception as e:
        logger.error(f"Aviso de cambio de portador omitido para la reserva {booking['_id']}: {e}", exc_info=True)
        return
    await notify(dispatcher, requester, NotificationType.nomadic_holder_changed, {
        "tool_name": tool.get("title") or tool.get("name") or "",
        "user_name": user_store.display_name(new_holder),
        "booking_id": str(booking["_id"]),
    })
