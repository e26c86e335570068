"""
Protocols describing the stores the engine reads from and commits to.

The engine never talks to a concrete persistence technology; adapters in
``slotbooker.adapters`` implement these protocols.
"""

from __future__ import annotations

from typing import AsyncContextManager, List, Optional, Protocol, Sequence

from pendulum import DateTime

from ..domain.models import (
    BlockedInterval,
    Booking,
    BookingStatus,
    BookingStatusChange,
    Professional,
    ServiceRequirement,
    WorkingPeriod,
)


class RosterStore(Protocol):
    """Professionals and their weekly working hours."""

    async def get_working_periods(self, professional_id: str) -> List[WorkingPeriod]:
        """Return the weekly working periods of a professional."""

    async def get_eligible_professionals(
        self,
        branch_id: str,
        service_ids: Sequence[str],
    ) -> List[Professional]:
        """Return active professionals of the branch capable of every service."""

    async def get_professional(self, professional_id: str) -> Optional[Professional]:
        """Return a professional or None."""


class OccupancyStore(Protocol):
    """Blocks and bookings that remove availability."""

    async def get_blocks(
        self,
        professional_id: str,
        day_start: DateTime,
        day_end: DateTime,
    ) -> List[BlockedInterval]:
        """Return blocks overlapping ``[day_start, day_end)``."""

    async def get_confirmed_bookings(
        self,
        professional_id: str,
        day_start: DateTime,
        day_end: DateTime,
    ) -> List[Booking]:
        """Return confirmed bookings overlapping ``[day_start, day_end)``."""

    async def count_confirmed_bookings(
        self,
        professional_id: str,
        day_start: DateTime,
        day_end: DateTime,
    ) -> int:
        """Count confirmed bookings starting within ``[day_start, day_end)``."""


class ServiceCatalog(Protocol):
    """Service durations and buffers."""

    async def get_services(self, service_ids: Sequence[str]) -> List[ServiceRequirement]:
        """Return the known services among ``service_ids``."""


class TransactionScope(RosterStore, OccupancyStore, Protocol):
    """
    Reads and writes bound to one open transaction.

    Everything written through the scope becomes visible to others only when
    the transaction commits.
    """

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Return a booking regardless of its status."""

    async def create_booking(self, booking: Booking) -> Booking:
        """Insert a new booking."""

    async def add_booking_services(self, booking_id: str, service_ids: Sequence[str]) -> None:
        """Link services to a booking, keeping their order."""

    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        """Change the status of a booking."""

    async def record_status_change(self, change: BookingStatusChange) -> None:
        """Append a status history entry."""


class TransactionalStore(Protocol):
    """A store able to run a read-check-write sequence atomically."""

    def transaction(self) -> AsyncContextManager[TransactionScope]:
        """
        Begin a transaction.

        The scope commits when the block exits normally and aborts, discarding
        every write, when it raises.
        """
