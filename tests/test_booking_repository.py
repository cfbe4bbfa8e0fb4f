import asyncio
import pytest
from bson import ObjectId
from datetime import date, datetime, timedelta

from app.domain.booking_state import BookingStatus
from app.services.booking_repository import (
    BookingFilter,
    BookingRepository,
    CasOutcome,
    Direction,
)

START = date(2030, 3, 1)
END = date(2030, 3, 2)


@pytest.mark.asyncio
async def test_cas_applies_only_from_expected_status(db, seed):
    owner = await seed.user("Olga")
    renter = await seed.user("Rita")
    tool = await seed.tool(owner)
    bid = await seed.booking(tool, renter, owner, START, END)
    repo = BookingRepository(db)

    outcome, doc = await repo.compare_and_set_status(bid, BookingStatus.pending, BookingStatus.accepted)
    assert outcome == CasOutcome.applied
    assert doc["status"] == "ACCEPTED"

    outcome, doc = await repo.compare_and_set_status(bid, BookingStatus.pending, BookingStatus.rejected)
    assert outcome == CasOutcome.not_applied
    assert doc["status"] == "ACCEPTED"

    outcome, doc = await repo.compare_and_set_status(ObjectId(), BookingStatus.pending, BookingStatus.accepted)
    assert outcome == CasOutcome.not_found
    assert doc is None


@pytest.mark.asyncio
async def test_concurrent_cas_has_single_winner(db, seed):
    owner = await seed.user("Olga")
    renter = await seed.user("Rita")
    tool = await seed.tool(owner)
    bid = await seed.booking(tool, renter, owner, START, END)
    repo = BookingRepository(db)

    results = await asyncio.gather(
        repo.compare_and_set_status(bid, BookingStatus.pending, BookingStatus.accepted),
        repo.compare_and_set_status(bid, BookingStatus.pending, BookingStatus.rejected),
    )
    outcomes = [o for o, _ in results]
    assert outcomes.count(CasOutcome.applied) == 1
    assert outcomes.count(CasOutcome.not_applied) == 1


@pytest.mark.asyncio
async def test_pending_first_then_newest(db, seed):
    owner = await seed.user("Olga")
    renter = await seed.user("Rita")
    tool = await seed.tool(owner)
    t0 = datetime(2030, 1, 1)
    old_pending = await seed.booking(tool, renter, owner, START, END, created_at=t0)
    new_accepted = await seed.booking(tool, renter, owner, START, END, status="ACCEPTED",
                                      created_at=t0 + timedelta(hours=3))
    new_pending = await seed.booking(tool, renter, owner, START, END, created_at=t0 + timedelta(hours=2))
    old_returned = await seed.booking(tool, renter, owner, START, END, status="RETURNED",
                                      created_at=t0 + timedelta(hours=1))

    page = await BookingRepository(db).list_page(
        BookingFilter(user_id=owner, direction=Direction.incoming), page=1, page_size=10
    )
    assert [b["_id"] for b in page.items] == [new_pending, old_pending, new_accepted, old_returned]
    assert page.total == 4
    assert page.pending_total == 2


@pytest.mark.asyncio
async def test_pages_cross_the_pending_boundary(db, seed):
    owner = await seed.user("Olga")
    renter = await seed.user("Rita")
    tool = await seed.tool(owner)
    t0 = datetime(2030, 1, 1)
    ids = {}
    for i, status in enumerate(["PENDING", "PENDING", "PENDING", "ACCEPTED", "REJECTED"]):
        ids[i] = await seed.booking(tool, renter, owner, START, END, status=status,
                                    created_at=t0 + timedelta(hours=i))
    repo = BookingRepository(db)
    flt = BookingFilter(user_id=renter, direction=Direction.outgoing)

    p1 = await repo.list_page(flt, page=1, page_size=2)
    p2 = await repo.list_page(flt, page=2, page_size=2)
    p3 = await repo.list_page(flt, page=3, page_size=2)
    assert [b["_id"] for b in p1.items] == [ids[2], ids[1]]
    assert [b["_id"] for b in p2.items] == [ids[0], ids[4]]
    assert [b["_id"] for b in p3.items] == [ids[3]]


@pytest.mark.asyncio
async def test_status_filter_without_pending(db, seed):
    owner = await seed.user("Olga")
    renter = await seed.user("Rita")
    tool = await seed.tool(owner)
    await seed.booking(tool, renter, owner, START, END)
    accepted = await seed.booking(tool, renter, owner, START, END, status="ACCEPTED")

    page = await BookingRepository(db).list_page(
        BookingFilter(tool_id=tool, statuses={BookingStatus.accepted}), page=1, page_size=10
    )
    assert [b["_id"] for b in page.items] == [accepted]
    assert page.total == 1


@pytest.mark.asyncio
async def test_rating_slot_is_written_once(db, seed):
    owner = await seed.user("Olga")
    renter = await seed.user("Rita")
    tool = await seed.tool(owner)
    bid = await seed.booking(tool, renter, owner, START, END, status="RETURNED")
    repo = BookingRepository(db)
    entry = {"from_user_id": renter, "to_user_id": owner, "rating": 5}

    assert await repo.set_rating_once(bid, "requester", entry) is not None
    assert await repo.set_rating_once(bid, "requester", {**entry, "rating": 1}) is None
    assert await repo.received_scores(owner) == [5]
    assert await repo.tool_scores(tool) == [5]
