# app/services/booking_repository.py
"""
Persistencia de reservas en la colección `bookings`.

Los cambios de estado van siempre por `compare_and_set_status`: un update
condicionado al estado esperado, de modo que dos peticiones concurrentes sobre
la misma reserva producen un único ganador.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..domain.booking_state import BookingStatus
from ..domain.temporal import DateRange
from . import store

Doc = Dict[str, Any]

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


class CasOutcome(str, Enum):
    applied = "applied"
    not_applied = "not_applied"  # la reserva existe pero su estado ya no es el esperado
    not_found = "not_found"


class Direction(str, Enum):
    incoming = "incoming"  # reservas dirigidas al usuario (to_user_id)
    outgoing = "outgoing"  # reservas pedidas por el usuario (from_user_id)


@dataclass
class BookingFilter:
    tool_id: Optional[str] = None
    user_id: Optional[str] = None
    direction: Optional[Direction] = None
    statuses: Optional[set[BookingStatus]] = None


@dataclass
class BookingPage:
    items: List[Doc]
    total: int
    page: int
    page_size: int
    pending_total: int = 0


def _values(statuses: Iterable[BookingStatus]) -> list[str]:
    return [s.value for s in statuses]


class BookingRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.col = db.bookings

    # ---------- altas y lecturas ----------

    async def insert(self, doc: Doc) -> Doc:
        doc = dict(doc)
        # _id asignado aquí: reintentar el insert no duplica la reserva
        doc.setdefault("_id", ObjectId())
        await store.run(lambda: self.col.insert_one(doc), "bookings.insert")
        return doc

    async def get(self, booking_id: ObjectId) -> Optional[Doc]:
        return await store.run(lambda: self.col.find_one({"_id": booking_id}), "bookings.get")

    async def find(self, query: Doc, sort=None, skip: int = 0, limit: int = 0) -> List[Doc]:
        async def op():
            cursor = self.col.find(query)
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=None)
        return await store.run(op, "bookings.find")

    async def count(self, query: Doc) -> int:
        return await store.run(lambda: self.col.count_documents(query), "bookings.count")

    async def find_overlapping(
        self,
        tool_id: str,
        date_range: DateRange,
        statuses: Iterable[BookingStatus],
        exclude_id: Optional[ObjectId] = None,
    ) -> List[Doc]:
        start, end = date_range.bounds()
        q: Doc = {
            "tool_id": tool_id,
            "status": {"$in": _values(statuses)},
            "start_date": {"$lte": end},
            "end_date": {"$gte": start},
        }
        if exclude_id is not None:
            q["_id"] = {"$ne": exclude_id}
        return await self.find(q)

    # ---------- cambios de estado ----------

    async def compare_and_set_status(
        self,
        booking_id: ObjectId,
        expected: BookingStatus,
        new: BookingStatus,
        extra: Optional[Doc] = None,
    ) -> tuple[CasOutcome, Optional[Doc]]:
        update = {"status": new.value, "updated_at": datetime.utcnow()}
        if extra:
            update.update(extra)
        doc = await store.run(
            lambda: self.col.find_one_and_update(
                {"_id": booking_id, "status": expected.value},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            ),
            "bookings.cas_status",
        )
        if doc is not None:
            return CasOutcome.applied, doc
        current = await self.get(booking_id)
        if current is None:
            return CasOutcome.not_found, None
        return CasOutcome.not_applied, current

    async def rewrite_recipient(
        self, tool_id: str, exclude_id: ObjectId, new_to_user_id: str, now: datetime
    ) -> List[Doc]:
        """
        Reasigna to_user_id de las reservas futuras abiertas de la herramienta.
        Devuelve las reservas que han cambiado; repetirla con el mismo portador
        no cambia nada más.
        """
        q = self._future_open_query(tool_id, exclude_id, now)
        q["to_user_id"] = {"$ne": new_to_user_id}
        affected = await self.find(q)
        if not affected:
            return []
        ids = [d["_id"] for d in affected]
        await store.run(
            lambda: self.col.update_many(
                {"_id": {"$in": ids}, "status": q["status"]},
                {"$set": {"to_user_id": new_to_user_id, "updated_at": datetime.utcnow()}},
            ),
            "bookings.rewrite_recipient",
        )
        return affected

    @staticmethod
    def _future_open_query(tool_id: str, exclude_id: ObjectId, now: datetime) -> Doc:
        return {
            "tool_id": tool_id,
            "_id": {"$ne": exclude_id},
            "status": {"$in": _values([BookingStatus.pending, BookingStatus.accepted])},
            "start_date": {"$gt": now},
        }

    # ---------- valoraciones embebidas ----------

    async def set_rating_once(self, booking_id: ObjectId, side: str, entry: Doc) -> Optional[Doc]:
        """Guarda la valoración de una parte solo si esa parte no ha valorado aún."""
        return await store.run(
            lambda: self.col.find_one_and_update(
                {"_id": booking_id, f"ratings.{side}": {"$exists": False}},
                {"$set": {f"ratings.{side}": entry, "updated_at": datetime.utcnow()}},
                return_document=ReturnDocument.AFTER,
            ),
            "bookings.set_rating",
        )

    async def received_scores(self, user_id: str) -> List[int]:
        """Todas las puntuaciones recibidas por un usuario, en cualquier reserva."""
        docs = await self.find({
            "$or": [
                {"ratings.owner.to_user_id": user_id},
                {"ratings.requester.to_user_id": user_id},
            ]
        })
        scores: List[int] = []
        for d in docs:
            for side in ("owner", "requester"):
                entry = (d.get("ratings") or {}).get(side)
                if entry and entry.get("to_user_id") == user_id:
                    scores.append(int(entry["rating"]))
        return scores

    async def tool_scores(self, tool_id: str) -> List[int]:
        docs = await self.find({"tool_id": tool_id, "ratings.requester": {"$exists": True}})
        return [int(d["ratings"]["requester"]["rating"]) for d in docs]

    # ---------- listados ----------

    async def list_page(self, flt: BookingFilter, page: int, page_size: int) -> BookingPage:
        """
        Página de reservas con las PENDING siempre delante y, dentro de cada
        grupo, la más reciente primero.
        """
        base = self._filter_query(flt)
        pending_q = dict(base)
        other_q = dict(base)
        wanted = flt.statuses
        if wanted is None or BookingStatus.pending in wanted:
            pending_q["status"] = BookingStatus.pending.value
        else:
            pending_q = None
        rest = set(BookingStatus) - {BookingStatus.pending} if wanted is None else set(wanted) - {BookingStatus.pending}
        other_q["status"] = {"$in": _values(rest)}

        pending_total = await self.count(pending_q) if pending_q is not None else 0
        other_total = await self.count(other_q) if rest else 0

        skip = (page - 1) * page_size
        items: List[Doc] = []
        if pending_q is not None and skip < pending_total:
            items = await self.find(pending_q, sort=NEWEST_FIRST, skip=skip, limit=page_size)
        remaining = page_size - len(items)
        if remaining > 0 and rest:
            other_skip = max(0, skip - pending_total)
            items += await self.find(other_q, sort=NEWEST_FIRST, skip=other_skip, limit=remaining)

        return BookingPage(
            items=items,
            total=pending_total + other_total,
            page=page,
            page_size=page_size,
            pending_total=pending_total,
        )

    @staticmethod
    def _filter_query(flt: BookingFilter) -> Doc:
        q: Doc = {}
        if flt.tool_id:
            q["tool_id"] = flt.tool_id
        if flt.user_id:
            if flt.direction == Direction.incoming:
                q["to_user_id"] = flt.user_id
            elif flt.direction == Direction.outgoing:
                q["from_user_id"] = flt.user_id
            else:
                q["$or"] = [{"from_user_id": flt.user_id}, {"to_user_id": flt.user_id}]
        return q
