"""
Tests for the in-memory store and its transactions.
"""

import asyncio

import pendulum
import pytest

from slotbooker.adapters.memory_store import InMemoryStore
from slotbooker.domain.exceptions import InvalidRequestError, StoreUnavailableError
from slotbooker.domain.models import (
    BlockedInterval,
    Booking,
    BookingStatus,
    CustomerInfo,
    Professional,
    ServiceRequirement,
    TimeWindow,
    WorkingPeriod,
)

TZ = "America/Sao_Paulo"


def _at(day: str, clock: str):
    return pendulum.parse(f"{day} {clock}", tz=TZ)


def _booking(booking_id: str, day: str, start: str, end: str, status=BookingStatus.CONFIRMED) -> Booking:
    return Booking(
        id=booking_id,
        branch_id="centro",
        professional_id="ana",
        window=TimeWindow(start=_at(day, start), end=_at(day, end)),
        customer=CustomerInfo(name="Maria"),
        status=status,
        service_ids=["cut"],
    )


def _seed_store(**kwargs) -> InMemoryStore:
    store = InMemoryStore(**kwargs)
    store.add_service(ServiceRequirement(id="cut", duration_minutes=30))
    for pid, created, active, services in [
        ("bruno", "2024-02-01", True, {"cut"}),
        ("ana", "2024-01-01", True, {"cut", "color"}),
        ("carla", "2023-01-01", False, {"cut"}),
        ("dora", "2023-06-01", True, {"color"}),
    ]:
        store.add_professional(Professional(
            id=pid,
            name=pid.title(),
            branch_id="centro",
            created_at=pendulum.parse(created, tz=TZ),
            service_ids=frozenset(services),
            is_active=active,
        ))
    store.add_working_period("ana", WorkingPeriod(weekday=1, start_minutes=540, end_minutes=1080))
    return store


class TestReads:
    """Tests for store queries."""

    def test_eligible_professionals(self):
        """Only active, capable members of the branch, oldest first."""
        store = _seed_store()

        professionals = asyncio.run(store.get_eligible_professionals("centro", ["cut"]))

        assert [p.id for p in professionals] == ["ana", "bruno"]

    def test_eligible_professionals_other_branch(self):
        """Other branches have nobody."""
        store = _seed_store()

        assert asyncio.run(store.get_eligible_professionals("norte", ["cut"])) == []

    def test_count_confirmed_bookings_within_day(self):
        """Only confirmed bookings starting inside the window are counted."""
        store = _seed_store()
        store.add_booking(_booking("a", "2024-11-25", "09:00", "09:30"))
        store.add_booking(_booking("b", "2024-11-25", "15:00", "15:30"))
        store.add_booking(_booking("c", "2024-11-25", "16:00", "16:30", status=BookingStatus.CANCELED))
        store.add_booking(_booking("d", "2024-11-26", "09:00", "09:30"))

        count = asyncio.run(store.count_confirmed_bookings(
            "ana",
            _at("2024-11-25", "00:00"),
            _at("2024-11-26", "00:00"),
        ))

        assert count == 2

    def test_blocks_overlapping_the_range(self):
        """Blocks are returned when they overlap the range, even partially."""
        store = _seed_store()
        store.add_block(BlockedInterval(
            professional_id="ana",
            window=TimeWindow(start=_at("2024-11-24", "20:00"), end=_at("2024-11-25", "10:00")),
        ))
        store.add_block(BlockedInterval(
            professional_id="ana",
            window=TimeWindow(start=_at("2024-11-26", "00:00"), end=_at("2024-11-26", "10:00")),
        ))

        blocks = asyncio.run(store.get_blocks(
            "ana",
            _at("2024-11-25", "00:00"),
            _at("2024-11-26", "00:00"),
        ))

        assert len(blocks) == 1
        assert blocks[0].window.end == _at("2024-11-25", "10:00")

    def test_unknown_services_are_left_out(self):
        """The catalog only returns known services."""
        store = _seed_store()

        services = asyncio.run(store.get_services(["cut", "massage"]))

        assert [s.id for s in services] == ["cut"]


class TestTransactions:
    """Tests for transaction isolation."""

    def test_writes_are_published_on_success(self):
        """Writes become visible when the block exits."""
        store = _seed_store()

        async def scenario():
            async with store.transaction() as scope:
                await scope.create_booking(_booking("a", "2024-11-25", "09:00", "09:30"))
                assert await store.get_booking("a") is None
                assert await scope.get_booking("a") is not None
            return await store.get_booking("a")

        assert asyncio.run(scenario()) is not None

    def test_writes_are_discarded_on_error(self):
        """An exception inside the block leaves the committed state untouched."""
        store = _seed_store()

        async def scenario():
            async with store.transaction() as scope:
                await scope.create_booking(_booking("a", "2024-11-25", "09:00", "09:30"))
                raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            asyncio.run(scenario())

        assert store.bookings() == []

    def test_status_update(self):
        """Status updates replace the booking row."""
        store = _seed_store()
        store.add_booking(_booking("a", "2024-11-25", "09:00", "09:30"))

        async def scenario():
            async with store.transaction() as scope:
                return await scope.update_booking_status("a", BookingStatus.CANCELED)

        updated = asyncio.run(scenario())

        assert updated.status is BookingStatus.CANCELED
        assert store.bookings()[0].status is BookingStatus.CANCELED

    def test_duplicate_booking_id(self):
        """Booking ids are unique."""
        store = _seed_store()
        store.add_booking(_booking("a", "2024-11-25", "09:00", "09:30"))

        async def scenario():
            async with store.transaction() as scope:
                await scope.create_booking(_booking("a", "2024-11-25", "11:00", "11:30"))

        with pytest.raises(InvalidRequestError, match="already exists"):
            asyncio.run(scenario())


class TestReplaceBranchRoster:
    """Tests for replace_branch_roster()."""

    def test_replaces_only_that_branch(self):
        """Professionals of other branches survive a roster refresh."""
        store = _seed_store()
        store.add_professional(Professional(
            id="otto",
            name="Otto",
            branch_id="norte",
            created_at=pendulum.parse("2023-01-01", tz=TZ),
        ))
        newcomer = Professional(
            id="eva",
            name="Eva",
            branch_id="centro",
            created_at=pendulum.parse("2024-05-01", tz=TZ),
            service_ids=frozenset({"cut"}),
        )

        store.replace_branch_roster(
            "centro",
            [newcomer],
            {"eva": [WorkingPeriod(weekday=2, start_minutes=600, end_minutes=900)]},
            [ServiceRequirement(id="shave", duration_minutes=20)],
        )

        assert {p.id for p in store.professionals()} == {"eva", "otto"}
        assert "ana" not in store.periods()
        assert store.periods()["eva"][0].weekday == 2
        assert {s.id for s in store.services()} == {"cut", "shave"}


class TestTransactionLock:
    """Tests for bounded lock acquisition."""

    def test_timed_out_attempt_does_not_keep_the_lock(self):
        """After a timeout the lock is free again once the holder finishes."""
        store = _seed_store(transaction_timeout_seconds=0.01)

        async def scenario():
            async with store.transaction():
                with pytest.raises(StoreUnavailableError):
                    async with store.transaction():
                        pass
            await asyncio.sleep(0)
            async with store.transaction() as scope:
                await scope.create_booking(_booking("a", "2024-11-25", "09:00", "09:30"))
            return store._lock.locked()

        assert asyncio.run(scenario()) is False
        assert [b.id for b in store.bookings()] == ["a"]

    def test_cancelled_waiter_does_not_keep_the_lock(self):
        """A caller cancelled while waiting leaves the lock to the next transaction."""
        store = InMemoryStore(transaction_timeout_seconds=1.0)

        async def waiter():
            async with store.transaction():
                pass

        async def scenario():
            async with store.transaction():
                task = asyncio.ensure_future(waiter())
                await asyncio.sleep(0)
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task
            async with store.transaction():
                pass
            return store._lock.locked()

        assert asyncio.run(scenario()) is False
