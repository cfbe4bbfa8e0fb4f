"""
Notificaciones del ciclo de vida de las reservas.

El envío real (plantillas, correo) queda fuera: aquí se deja cada aviso en la
colección `notifications`, que consume el mailer. Los avisos nunca deben tumbar
la operación que los provoca, por eso `notify` captura y registra cualquier fallo.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..config import get_settings
from . import store

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    new_incoming_request = "incoming_requests"
    booking_accepted = "booking_accepted"
    nomadic_holder_changed = "tool_holder_changed"


def wants(user: Dict[str, Any], kind: NotificationType) -> bool:
    # Todas las notificaciones de reservas están activas por defecto
    prefs = user.get("notification_preferences") or {}
    return bool(prefs.get(kind.value, True))


def branding() -> Dict[str, str]:
    s = get_settings()
    return {"app_name": s.app_name, "app_url": s.app_url, "logo_url": s.logo_url}


class NotificationDispatcher:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def send(self, user: Dict[str, Any], kind: NotificationType, payload: Dict[str, Any]) -> None:
        doc = {
            "user_id": str(user["_id"]),
            "email": user.get("email"),
            "type": kind.value,
            "payload": {**branding(), **payload},
            "status": "queued",
            "created_at": datetime.utcnow(),
        }
        await store.run(lambda: self.db.notifications.insert_one(doc), "notifications.insert")


def get_dispatcher(db: AsyncIOMotorDatabase) -> NotificationDispatcher:
    return NotificationDispatcher(db)


async def notify(
    dispatcher: NotificationDispatcher,
    user: Dict[str, Any],
    kind: NotificationType,
    payload: Dict[str, Any],
) -> bool:
    """Envío best-effort: devuelve False si no se envió, nunca lanza."""
    if not wants(user, kind):
        return False
    try:
        await dispatcher.send(user, kind, payload)
        return True
    except Exception as e:
        logger.error(f"No se pudo enviar la notificación {kind.value} a {user.get('_id')}: {e}", exc_info=True)
        return False
