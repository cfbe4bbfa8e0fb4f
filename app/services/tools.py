"""
Acceso a la colección `tools`.

La herramienta no pertenece al núcleo de reservas; aquí solo se leen los campos
que le importan (owner_id, is_nomadic, actual_holder_id, max_distance_km,
communities, location) y se escriben el puntero de portador, el historial de
portadores, la nota media y el registro de fechas reservadas.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..domain.temporal import DateRange
from ..errors import NotFoundError
from ..utils import to_object_id, version_filter
from . import store

Doc = Dict[str, Any]


async def get_tool(db: AsyncIOMotorDatabase, tool_id: str) -> Doc:
    oid = to_object_id(tool_id, "tool_id")
    tool = await store.run(lambda: db.tools.find_one({"_id": oid}), "tools.get")
    if not tool:
        raise NotFoundError("Herramienta", str(tool_id))
    return tool


def current_recipient(tool: Doc) -> str:
    """A quién van dirigidas las nuevas reservas de la herramienta."""
    if tool.get("is_nomadic") and tool.get("actual_holder_id"):
        return str(tool["actual_holder_id"])
    return str(tool["owner_id"])


async def reserve_dates(db: AsyncIOMotorDatabase, tool_id: str, booking_id: ObjectId, date_range: DateRange) -> bool:
    """
    Apunta el rango en `reserved_dates` con un único update condicionado: solo
    se aplica si ninguna otra reserva ocupa un rango solapado. Devuelve False si
    otra reserva ganó la carrera. Repetirla para la misma reserva es inocuo.
    """
    start, end = date_range.bounds()
    oid = to_object_id(tool_id, "tool_id")
    already = await store.run(
        lambda: db.tools.count_documents({"_id": oid, "reserved_dates.booking_id": booking_id}),
        "tools.reserved_lookup",
    )
    if already:
        return True
    res = await store.run(
        lambda: db.tools.update_one(
            {
                "_id": oid,
                "$nor": [{
                    "reserved_dates": {"$elemMatch": {
                        "booking_id": {"$ne": booking_id},
                        "from": {"$lte": end},
                        "to": {"$gte": start},
                    }}
                }],
            },
            {"$push": {"reserved_dates": {"booking_id": booking_id, "from": start, "to": end}}},
        ),
        "tools.reserve_dates",
    )
    return res.modified_count == 1


async def release_dates(db: AsyncIOMotorDatabase, tool_id: str, booking_id: ObjectId) -> None:
    oid = to_object_id(tool_id, "tool_id")
    await store.run(
        lambda: db.tools.update_one({"_id": oid}, {"$pull": {"reserved_dates": {"booking_id": booking_id}}}),
        "tools.release_dates",
    )


async def set_actual_holder(
    db: AsyncIOMotorDatabase,
    tool_id: str,
    holder_id: str,
    location: Optional[Doc] = None,
) -> None:
    oid = to_object_id(tool_id, "tool_id")
    fields: Doc = {"actual_holder_id": holder_id, "updated_at": datetime.utcnow()}
    if location:
        # La herramienta viaja con su portador
        fields["location"] = location
    await store.run(lambda: db.tools.update_one({"_id": oid}, {"$set": fields}), "tools.set_holder")


async def add_holder_history(db: AsyncIOMotorDatabase, tool_id: str, holder_id: str, booking_id: ObjectId) -> None:
    oid = to_object_id(tool_id, "tool_id")
    entry = {"user_id": holder_id, "booking_id": booking_id, "picked_at": datetime.utcnow()}
    await store.run(
        lambda: db.tools.update_one(
            # una entrada por reserva aunque se reintente
            {"_id": oid, "holder_history.booking_id": {"$ne": booking_id}},
            {"$push": {"holder_history": entry}},
        ),
        "tools.holder_history",
    )


async def set_rating(db: AsyncIOMotorDatabase, tool_id: str, rating: int, expected_version: int) -> bool:
    """Misma escritura condicionada que la reputación de los usuarios."""
    oid = to_object_id(tool_id, "tool_id")
    res = await store.run(
        lambda: db.tools.update_one(
            {"_id": oid, "rating_version": version_filter(expected_version)},
            {"$set": {"rating": rating, "rating_version": expected_version + 1}},
        ),
        "tools.set_rating",
    )
    return res.matched_count == 1
