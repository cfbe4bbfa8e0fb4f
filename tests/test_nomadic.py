"""
Herramientas nómadas: al recogerla, el solicitante pasa a ser el portador y
las reservas futuras abiertas se le reasignan.
"""
import pytest
from bson import ObjectId
from datetime import datetime, timedelta

from app.domain.temporal import DateRange
from app.services import bookings as svc
from app.services.nomadic import propagate_holder
from app.services.notifications import NotificationType


def days(n: int):
    return datetime.utcnow().date() + timedelta(days=n)


@pytest.fixture
async def nomad(seed):
    owner = await seed.user("Olga")
    alba = await seed.user("Alba", location={"lat": 39.4699, "lng": -0.3763})
    bruno = await seed.user("Bruno")
    carla = await seed.user("Carla")
    dani = await seed.user("Dani")
    elena = await seed.user("Elena")
    tool = await seed.tool(owner, is_nomadic=True, title="Escalera")

    picked = await seed.booking(tool, alba, owner, days(0), days(1), status="ACCEPTED", is_nomadic=True)
    future_pending = await seed.booking(tool, bruno, owner, days(5), days(6), is_nomadic=True)
    future_accepted = await seed.booking(tool, carla, owner, days(8), days(9), status="ACCEPTED", is_nomadic=True)
    past_pending = await seed.booking(tool, dani, owner, days(-3), days(-2), is_nomadic=True)
    future_rejected = await seed.booking(tool, elena, owner, days(5), days(6), status="REJECTED", is_nomadic=True)
    return {
        "owner": owner, "alba": alba, "bruno": bruno, "carla": carla, "tool": tool,
        "picked": picked, "future_pending": future_pending, "future_accepted": future_accepted,
        "past_pending": past_pending, "future_rejected": future_rejected,
    }


async def _to_user(db, bid):
    return (await db.bookings.find_one({"_id": bid}))["to_user_id"]


@pytest.mark.asyncio
async def test_pick_moves_holder_and_future_bookings(db, nomad, dispatcher):
    n = nomad
    updated = await svc.update_status(db, str(n["picked"]), n["owner"], "PICKED", dispatcher=dispatcher)
    assert updated["status"] == "PICKED"

    tool = await db.tools.find_one({"_id": ObjectId(n["tool"])})
    assert tool["actual_holder_id"] == n["alba"]
    assert tool["location"] == {"lat": 39.4699, "lng": -0.3763}
    assert [h["booking_id"] for h in tool["holder_history"]] == [n["picked"]]

    assert await _to_user(db, n["future_pending"]) == n["alba"]
    assert await _to_user(db, n["future_accepted"]) == n["alba"]
    # La recogida, las pasadas y las terminadas no cambian
    assert await _to_user(db, n["picked"]) == n["owner"]
    assert await _to_user(db, n["past_pending"]) == n["owner"]
    assert await _to_user(db, n["future_rejected"]) == n["owner"]

    notified = sorted(user_id for user_id, _, _ in dispatcher.sent)
    assert notified == sorted([n["bruno"], n["carla"]])
    assert all(kind == NotificationType.nomadic_holder_changed for _, kind, _ in dispatcher.sent)
    assert all(p["user_name"] == "Alba" for _, _, p in dispatcher.sent)


@pytest.mark.asyncio
async def test_new_requests_go_to_the_holder(db, nomad):
    n = nomad
    await svc.update_status(db, str(n["picked"]), n["owner"], "PICKED")
    b = await svc.create_booking(db, n["tool"], n["bruno"], DateRange(days(20), days(21)))
    assert b["to_user_id"] == n["alba"]


@pytest.mark.asyncio
async def test_holder_chain(db, nomad):
    """El portador actual acepta y entrega la herramienta al siguiente"""
    n = nomad
    await svc.update_status(db, str(n["picked"]), n["owner"], "PICKED")
    await svc.update_status(db, str(n["future_accepted"]), n["alba"], "PICKED")

    tool = await db.tools.find_one({"_id": ObjectId(n["tool"])})
    assert tool["actual_holder_id"] == n["carla"]
    assert await _to_user(db, n["future_pending"]) == n["carla"]
    assert len(tool["holder_history"]) == 2


@pytest.mark.asyncio
async def test_notification_failure_keeps_the_rewrite(db, nomad, failing_dispatcher):
    n = nomad
    updated = await svc.update_status(db, str(n["picked"]), n["owner"], "PICKED", dispatcher=failing_dispatcher)
    assert updated["status"] == "PICKED"
    assert await _to_user(db, n["future_pending"]) == n["alba"]
    assert await _to_user(db, n["future_accepted"]) == n["alba"]


@pytest.mark.asyncio
async def test_no_future_bookings_is_a_noop(db, seed, dispatcher):
    owner = await seed.user("Olga")
    alba = await seed.user("Alba")
    tool_id = await seed.tool(owner, is_nomadic=True)
    bid = await seed.booking(tool_id, alba, owner, days(0), days(1), status="PICKED")
    tool = await db.tools.find_one({"_id": ObjectId(tool_id)})
    picked = await db.bookings.find_one({"_id": bid})

    assert await propagate_holder(db, tool, picked, dispatcher=dispatcher) == []
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_propagation_is_idempotent(db, nomad, dispatcher):
    n = nomad
    await svc.update_status(db, str(n["picked"]), n["owner"], "PICKED")
    tool = await db.tools.find_one({"_id": ObjectId(n["tool"])})
    picked = await db.bookings.find_one({"_id": n["picked"]})
    assert await propagate_holder(db, tool, picked, dispatcher=dispatcher) == []
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_repeating_picked_resumes_an_interrupted_propagation(db, nomad, dispatcher):
    n = nomad
    await svc.update_status(db, str(n["picked"]), n["owner"], "PICKED")
    # Simula una propagación que no llegó a esta reserva
    await db.bookings.update_one({"_id": n["future_pending"]}, {"$set": {"to_user_id": n["owner"]}})

    again = await svc.update_status(db, str(n["picked"]), n["owner"], "PICKED", dispatcher=dispatcher)
    assert again["status"] == "PICKED"
    assert await _to_user(db, n["future_pending"]) == n["alba"]
    assert [user_id for user_id, _, _ in dispatcher.sent] == [n["bruno"]]
    tool = await db.tools.find_one({"_id": ObjectId(n["tool"])})
    assert len(tool["holder_history"]) == 1


@pytest.mark.asyncio
async def test_picked_booking_can_be_returned(db, nomad):
    n = nomad
    await svc.update_status(db, str(n["picked"]), n["owner"], "PICKED")
    returned = await svc.update_status(db, str(n["picked"]), n["owner"], "RETURNED")
    assert returned["status"] == "RETURNED"
    tool = await db.tools.find_one({"_id": ObjectId(n["tool"])})
    # El portador no cambia al devolver
    assert tool["actual_holder_id"] == n["alba"]
