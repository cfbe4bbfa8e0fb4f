import pytest
from datetime import date

from app.domain.temporal import DateRange
from app.errors import BookingDatesConflictError
from app.services.conflicts import assert_no_conflict, has_conflict

JUNE_10_12 = DateRange(date(2030, 6, 10), date(2030, 6, 12))


async def _setup(seed):
    owner = await seed.user("Olga")
    renter = await seed.user("Rita")
    tool = await seed.tool(owner)
    return owner, renter, tool


@pytest.mark.asyncio
async def test_pending_bookings_never_block(db, seed):
    owner, renter, tool = await _setup(seed)
    await seed.booking(tool, renter, owner, date(2030, 6, 9), date(2030, 6, 11), status="PENDING")
    assert not await has_conflict(db, tool, JUNE_10_12)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["ACCEPTED", "PICKED"])
async def test_committed_bookings_block(db, seed, status):
    owner, renter, tool = await _setup(seed)
    await seed.booking(tool, renter, owner, date(2030, 6, 12), date(2030, 6, 14), status=status)
    assert await has_conflict(db, tool, JUNE_10_12)
    with pytest.raises(BookingDatesConflictError):
        await assert_no_conflict(db, tool, JUNE_10_12)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["REJECTED", "CANCELLED", "RETURNED"])
async def test_finished_bookings_free_the_dates(db, seed, status):
    owner, renter, tool = await _setup(seed)
    await seed.booking(tool, renter, owner, date(2030, 6, 10), date(2030, 6, 12), status=status)
    assert not await has_conflict(db, tool, JUNE_10_12)


@pytest.mark.asyncio
async def test_adjacent_and_other_tool_do_not_block(db, seed):
    owner, renter, tool = await _setup(seed)
    other_tool = await seed.tool(owner, title="Sierra")
    await seed.booking(tool, renter, owner, date(2030, 6, 13), date(2030, 6, 15), status="ACCEPTED")
    await seed.booking(other_tool, renter, owner, date(2030, 6, 10), date(2030, 6, 12), status="ACCEPTED")
    assert not await has_conflict(db, tool, JUNE_10_12)


@pytest.mark.asyncio
async def test_exclude_id_ignores_the_booking_itself(db, seed):
    owner, renter, tool = await _setup(seed)
    bid = await seed.booking(tool, renter, owner, date(2030, 6, 10), date(2030, 6, 12), status="ACCEPTED")
    assert await has_conflict(db, tool, JUNE_10_12)
    assert not await has_conflict(db, tool, JUNE_10_12, exclude_id=bid)
