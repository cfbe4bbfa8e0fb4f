"""Lo que el núcleo de reservas necesita de la colección `users`."""
from typing import Any, Dict, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import NotFoundError
from ..utils import is_within_radius, to_object_id, version_filter
from . import store

Doc = Dict[str, Any]


async def get_user(db: AsyncIOMotorDatabase, user_id: str) -> Doc:
    oid = to_object_id(user_id, "user_id")
    user = await store.run(lambda: db.users.find_one({"_id": oid}), "users.get")
    if not user:
        raise NotFoundError("Usuario", str(user_id))
    return user


def is_active(user: Doc) -> bool:
    # Los usuarios sin el campo se consideran activos
    return bool(user.get("active", True))


def display_name(user: Doc) -> str:
    return user.get("name") or user.get("email") or "Usuario"


def is_member(user: Doc, community_id: str) -> bool:
    return str(community_id) in {str(c) for c in user.get("communities") or []}


def is_member_of_any(user: Doc, community_ids: Iterable[Any]) -> bool:
    return any(is_member(user, c) for c in community_ids)


def within_distance(user: Doc, location: Optional[Doc], max_km: float) -> bool:
    """Sin coordenadas en alguno de los dos lados no se puede comprobar: se rechaza."""
    user_loc = user.get("location") or {}
    if not location or user_loc.get("lat") is None or location.get("lat") is None:
        return False
    return is_within_radius(
        location["lat"], location["lng"], user_loc["lat"], user_loc["lng"], max_km
    )


async def set_reputation(
    db: AsyncIOMotorDatabase, user_id: str, rating: int, rating_count: int, expected_version: int
) -> bool:
    """
    Escribe la reputación solo si nadie la ha reescrito desde que se leyó
    `rating_version`. Devuelve False si otra escritura se adelantó.
    """
    oid = to_object_id(user_id, "user_id")
    res = await store.run(
        lambda: db.users.update_one(
            {"_id": oid, "rating_version": version_filter(expected_version)},
            {"$set": {
                "rating": rating,
                "rating_count": rating_count,
                "rating_version": expected_version + 1,
            }},
        ),
        "users.set_reputation",
    )
    return res.matched_count == 1


async def add_karma(db: AsyncIOMotorDatabase, user_id: str, delta: int) -> None:
    oid = to_object_id(user_id, "user_id")
    await store.run(lambda: db.users.update_one({"_id": oid}, {"$inc": {"karma": delta}}), "users.add_karma")
