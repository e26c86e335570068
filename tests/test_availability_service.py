"""
Tests for the AvailabilityService orchestration layer.
"""

import asyncio
from datetime import date
from typing import Sequence

import pendulum
import pytest

from slotbooker.adapters.memory_store import InMemoryStore
from slotbooker.config import AppConfig, BranchConfig, SchedulingDefaults
from slotbooker.domain.exceptions import (
    IncapableProfessionalError,
    InvalidRequestError,
    ProfessionalNotFoundError,
    ServiceNotFoundError,
    StoreUnavailableError,
)
from slotbooker.domain.models import (
    Booking,
    CustomerInfo,
    Professional,
    ServiceRequirement,
    TimeWindow,
    WorkingPeriod,
)
from slotbooker.services.availability import AvailabilityService

MONDAY = date(2024, 11, 25)
TZ = "Europe/Berlin"


def _seed_store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_service(ServiceRequirement(id="cut", duration_minutes=30))
    store.add_service(ServiceRequirement(id="beard", duration_minutes=15, buffer_minutes=5))
    store.add_service(ServiceRequirement(id="retired", duration_minutes=30, is_active=False))

    store.add_professional(Professional(
        id="ana",
        name="Ana",
        branch_id="centro",
        created_at=pendulum.datetime(2024, 1, 1, tz=TZ),
        service_ids=frozenset({"cut", "beard", "retired"}),
    ))
    store.add_professional(Professional(
        id="bruno",
        name="Bruno",
        branch_id="centro",
        created_at=pendulum.datetime(2024, 2, 1, tz=TZ),
        service_ids=frozenset({"cut"}),
    ))
    store.add_professional(Professional(
        id="otto",
        name="Otto",
        branch_id="norte",
        created_at=pendulum.datetime(2023, 1, 1, tz=TZ),
        service_ids=frozenset({"cut"}),
    ))

    store.add_working_period("ana", WorkingPeriod(weekday=1, start_minutes=540, end_minutes=720))
    store.add_working_period("bruno", WorkingPeriod(weekday=1, start_minutes=600, end_minutes=720))
    store.add_working_period("otto", WorkingPeriod(weekday=1, start_minutes=540, end_minutes=720))
    return store


def _config(**defaults) -> AppConfig:
    return AppConfig(
        timezone=TZ,
        defaults=SchedulingDefaults(**defaults),
        branches=[BranchConfig(id="centro", timezone=TZ), BranchConfig(id="norte", timezone=TZ)],
    )


def _build_service(store, occupancy=None, **defaults) -> AvailabilityService:
    return AvailabilityService(
        roster=store,
        occupancy=occupancy or store,
        catalog=store,
        config=_config(**defaults),
    )


def _at(clock: str):
    return pendulum.parse(f"2024-11-25 {clock}", tz=TZ)


class FlakyOccupancy:
    """Occupancy stub that fails or stalls for selected professionals."""

    def __init__(self, store: InMemoryStore, failing: Sequence[str] = (), slow: Sequence[str] = ()):
        self._store = store
        self._failing = set(failing)
        self._slow = set(slow)

    async def get_blocks(self, professional_id, day_start, day_end):
        if professional_id in self._failing:
            raise StoreUnavailableError("occupancy backend down")
        if professional_id in self._slow:
            await asyncio.sleep(1)
        return await self._store.get_blocks(professional_id, day_start, day_end)

    async def get_confirmed_bookings(self, professional_id, day_start, day_end):
        return await self._store.get_confirmed_bookings(professional_id, day_start, day_end)

    async def count_confirmed_bookings(self, professional_id, day_start, day_end):
        return await self._store.count_confirmed_bookings(professional_id, day_start, day_end)


class TestFindSlots:
    """Tests for slot search across a branch."""

    def test_union_recommends_earliest_registered(self):
        """Shared slots list both professionals; the older one is recommended."""
        service = _build_service(_seed_store())

        search = asyncio.run(service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut"]))

        # Ana 09:00-11:30 (11 starts); Bruno only adds to 10:00 onwards
        assert len(search.options) == 11
        assert not search.degraded
        first = search.options[0]
        assert first.start == _at("09:00")
        assert first.professional_ids() == ["ana"]

        shared = [o for o in search.options if o.start == _at("10:00")][0]
        assert shared.professional_ids() == ["ana", "bruno"]
        assert shared.recommended_professional_id == "ana"

    def test_booking_count_shifts_recommendation(self):
        """A confirmed booking that day moves Ana behind Bruno."""
        store = _seed_store()
        store.add_booking(Booking(
            id="bk-1",
            branch_id="centro",
            professional_id="ana",
            window=TimeWindow(start=_at("09:00"), end=_at("09:30")),
            customer=CustomerInfo(name="Maria"),
            service_ids=["cut"],
        ))
        service = _build_service(store)

        options = asyncio.run(service.get_available_slots("centro", MONDAY, ["cut"]))

        assert options[0].start == _at("09:30")
        shared = [o for o in options if o.start == _at("10:00")][0]
        assert shared.recommended_professional_id == "bruno"
        assert shared.professional_ids() == ["bruno", "ana"]

    def test_buffers_extend_slot_length(self):
        """Durations and buffers of all services add up."""
        service = _build_service(_seed_store())

        search = asyncio.run(
            service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut", "beard"])
        )

        assert search.duration_minutes == 50
        # Only Ana can do both
        assert all(o.professional_ids() == ["ana"] for o in search.options)
        assert search.options[-1].end <= _at("12:00")

    def test_professionals_of_other_branches_are_ignored(self):
        """Eligibility is scoped to the branch."""
        service = _build_service(_seed_store())

        search = asyncio.run(service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut"]))

        assert all("otto" not in o.professional_ids() for o in search.options)

    def test_no_eligible_professionals(self):
        """A branch without capable staff yields no options."""
        service = _build_service(_seed_store())

        search = asyncio.run(service.find_slots(branch_id="norte", day=MONDAY, service_ids=["beard"]))

        assert search.options == []

    def test_failing_lookup_degrades_result(self):
        """A failing professional is skipped and reported."""
        store = _seed_store()
        service = _build_service(store, occupancy=FlakyOccupancy(store, failing=["bruno"]))

        search = asyncio.run(service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut"]))

        assert search.degraded
        assert search.skipped_professional_ids == ["bruno"]
        assert len(search.options) == 11
        assert all(o.professional_ids() == ["ana"] for o in search.options)

    def test_slow_lookup_times_out(self):
        """A lookup exceeding the timeout is skipped."""
        store = _seed_store()
        service = _build_service(
            store,
            occupancy=FlakyOccupancy(store, slow=["ana"]),
            lookup_timeout_seconds=0.05,
        )

        search = asyncio.run(service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut"]))

        assert search.skipped_professional_ids == ["ana"]
        assert search.options[0].start == _at("10:00")

    def test_branch_granularity_is_used(self):
        """A branch-level grid overrides the default."""
        store = _seed_store()
        config = AppConfig(
            timezone=TZ,
            branches=[BranchConfig(id="centro", timezone=TZ, slot_granularity_minutes=30)],
        )
        service = AvailabilityService(roster=store, occupancy=store, catalog=store, config=config)

        search = asyncio.run(service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut"]))

        assert search.grid_minutes == 30
        assert [o.start.minute for o in search.options] == [0, 30, 0, 30, 0, 30]


class TestPinnedProfessional:
    """Tests for searches restricted to one professional."""

    def test_pinned_professional_only(self):
        """Only the pinned professional's slots are returned."""
        service = _build_service(_seed_store())

        search = asyncio.run(
            service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut"], professional_id="bruno")
        )

        assert len(search.options) == 7
        assert all(o.recommended_professional_id == "bruno" for o in search.options)

    def test_incapable_professional(self):
        """Pinning someone who cannot perform a service is rejected."""
        service = _build_service(_seed_store())

        with pytest.raises(IncapableProfessionalError):
            asyncio.run(
                service.find_slots(
                    branch_id="centro", day=MONDAY, service_ids=["cut", "beard"], professional_id="bruno"
                )
            )

    def test_unknown_professional(self):
        """An unknown id is reported as not found."""
        service = _build_service(_seed_store())

        with pytest.raises(ProfessionalNotFoundError):
            asyncio.run(
                service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut"], professional_id="zoe")
            )

    def test_professional_of_other_branch(self):
        """A professional from another branch is rejected."""
        service = _build_service(_seed_store())

        with pytest.raises(InvalidRequestError):
            asyncio.run(
                service.find_slots(branch_id="centro", day=MONDAY, service_ids=["cut"], professional_id="otto")
            )


class TestResolveServices:
    """Tests for service validation."""

    def test_unknown_service(self):
        """Unknown services fail the request."""
        service = _build_service(_seed_store())

        with pytest.raises(ServiceNotFoundError, match="massage"):
            asyncio.run(service.resolve_services(["cut", "massage"]))

    def test_inactive_service(self):
        """Inactive services are treated as missing."""
        service = _build_service(_seed_store())

        with pytest.raises(ServiceNotFoundError):
            asyncio.run(service.resolve_services(["retired"]))

    def test_duplicate_service(self):
        """The same service twice is rejected."""
        service = _build_service(_seed_store())

        with pytest.raises(InvalidRequestError, match="Duplicate"):
            asyncio.run(service.resolve_services(["cut", "cut"]))

    def test_empty_request(self):
        """At least one service is required."""
        service = _build_service(_seed_store())

        with pytest.raises(InvalidRequestError):
            asyncio.run(service.resolve_services([]))
