"""
In-memory implementation of every store protocol.

Transactions are serialized through an ``asyncio.Lock``: a transaction works
on a private copy of the tables and publishes it only when its block exits
without an exception. Readers outside a transaction always see the last
committed state.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Sequence

from pendulum import DateTime

from ..domain.exceptions import InvalidRequestError, StoreUnavailableError
from ..domain.models import (
    BlockedInterval,
    Booking,
    BookingStatus,
    BookingStatusChange,
    Professional,
    ServiceRequirement,
    TimeWindow,
    WorkingPeriod,
)

logger = logging.getLogger(__name__)


@dataclass
class _Tables:
    professionals: Dict[str, Professional] = field(default_factory=dict)
    periods: Dict[str, List[WorkingPeriod]] = field(default_factory=dict)
    services: Dict[str, ServiceRequirement] = field(default_factory=dict)
    blocks: List[BlockedInterval] = field(default_factory=list)
    bookings: Dict[str, Booking] = field(default_factory=dict)
    booking_services: Dict[str, List[str]] = field(default_factory=dict)
    status_history: List[BookingStatusChange] = field(default_factory=list)

    def copy(self) -> "_Tables":
        # Rows are replaced, never mutated, so copying the containers is enough.
        return _Tables(
            professionals=dict(self.professionals),
            periods={pid: list(periods) for pid, periods in self.periods.items()},
            services=dict(self.services),
            blocks=list(self.blocks),
            bookings=dict(self.bookings),
            booking_services={bid: list(ids) for bid, ids in self.booking_services.items()},
            status_history=list(self.status_history),
        )


class _TableReader:
    """Read operations shared by the store and its transaction scopes."""

    def _tables(self) -> _Tables:
        raise NotImplementedError

    async def get_working_periods(self, professional_id: str) -> List[WorkingPeriod]:
        return list(self._tables().periods.get(professional_id, []))

    async def get_eligible_professionals(
        self,
        branch_id: str,
        service_ids: Sequence[str],
    ) -> List[Professional]:
        professionals = [
            professional
            for professional in self._tables().professionals.values()
            if professional.branch_id == branch_id
            and professional.is_active
            and professional.can_perform(service_ids)
        ]
        professionals.sort(key=lambda p: (p.created_at, p.id))
        return professionals

    async def get_professional(self, professional_id: str) -> Optional[Professional]:
        return self._tables().professionals.get(professional_id)

    async def get_services(self, service_ids: Sequence[str]) -> List[ServiceRequirement]:
        services = self._tables().services
        return [services[sid] for sid in service_ids if sid in services]

    async def get_blocks(
        self,
        professional_id: str,
        day_start: DateTime,
        day_end: DateTime,
    ) -> List[BlockedInterval]:
        return [
            block
            for block in self._tables().blocks
            if block.professional_id == professional_id
            and block.window.start < day_end
            and block.window.end > day_start
        ]

    async def get_confirmed_bookings(
        self,
        professional_id: str,
        day_start: DateTime,
        day_end: DateTime,
    ) -> List[Booking]:
        return [
            booking
            for booking in self._tables().bookings.values()
            if booking.professional_id == professional_id
            and booking.is_confirmed
            and booking.start < day_end
            and booking.end > day_start
        ]

    async def count_confirmed_bookings(
        self,
        professional_id: str,
        day_start: DateTime,
        day_end: DateTime,
    ) -> int:
        return sum(
            1
            for booking in self._tables().bookings.values()
            if booking.professional_id == professional_id
            and booking.is_confirmed
            and day_start <= booking.start < day_end
        )

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self._tables().bookings.get(booking_id)


class InMemoryTransaction(_TableReader):
    """
    Transaction scope over a private working copy of the tables.
    """

    def __init__(self, tables: _Tables):
        self._working = tables

    def _tables(self) -> _Tables:
        return self._working

    async def create_booking(self, booking: Booking) -> Booking:
        if booking.id in self._working.bookings:
            raise InvalidRequestError(f"Booking id already exists: {booking.id}")
        self._working.bookings[booking.id] = booking
        return booking

    async def add_booking_services(self, booking_id: str, service_ids: Sequence[str]) -> None:
        self._working.booking_services.setdefault(booking_id, []).extend(service_ids)

    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        booking = self._working.bookings.get(booking_id)
        if booking is None:
            raise InvalidRequestError(f"Booking not found: {booking_id}")
        updated = dataclasses.replace(booking, status=status)
        self._working.bookings[booking_id] = updated
        return updated

    async def record_status_change(self, change: BookingStatusChange) -> None:
        self._working.status_history.append(change)


class InMemoryStore(_TableReader):
    """
    Roster, occupancy, catalog and transactional store kept in process memory.

    Useful for the CLI demo mode and for tests; provides serializable
    isolation for transactions.
    """

    def __init__(self, transaction_timeout_seconds: float = 10.0):
        self._committed = _Tables()
        self._lock = asyncio.Lock()
        self._transaction_timeout = transaction_timeout_seconds

    def _tables(self) -> _Tables:
        return self._committed

    @classmethod
    def from_fixture(cls, path: Path, transaction_timeout_seconds: float = 10.0) -> "InMemoryStore":
        """Build a store from a YAML fixture file."""
        from .fixture import load_fixture

        store = cls(transaction_timeout_seconds=transaction_timeout_seconds)
        load_fixture(path).populate(store)
        return store

    def to_fixture(self, path: Path) -> None:
        """Write the committed state back to a YAML fixture file."""
        from .fixture import Fixture, save_fixture

        save_fixture(Fixture.from_store(self), path)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        """
        Run a block as one atomic transaction.

        Raises:
            StoreUnavailableError: If the store could not be locked in time
        """
        await self._acquire_lock()

        try:
            scope = InMemoryTransaction(self._committed.copy())
            try:
                yield scope
            except BaseException:
                logger.debug("Transaction aborted, discarding writes")
                raise
            self._committed = scope._working
        finally:
            self._lock.release()

    async def _acquire_lock(self) -> None:
        # A lock granted while the wait is abandoned must not stay held.
        acquire = asyncio.ensure_future(self._lock.acquire())
        try:
            done, _ = await asyncio.wait({acquire}, timeout=self._transaction_timeout)
        except asyncio.CancelledError:
            if acquire.done() and not acquire.cancelled():
                self._lock.release()
            else:
                acquire.cancel()
            raise

        if not done:
            acquire.cancel()
            raise StoreUnavailableError(
                f"Could not begin transaction within {self._transaction_timeout}s"
            )

    # Seeding helpers used by fixtures and tests.

    def add_professional(self, professional: Professional) -> None:
        self._committed.professionals[professional.id] = professional

    def add_working_period(self, professional_id: str, period: WorkingPeriod) -> None:
        self._committed.periods.setdefault(professional_id, []).append(period)

    def add_service(self, service: ServiceRequirement) -> None:
        self._committed.services[service.id] = service

    def add_block(self, block: BlockedInterval) -> None:
        self._committed.blocks.append(block)

    def add_booking(self, booking: Booking) -> None:
        self._committed.bookings[booking.id] = booking
        self._committed.booking_services[booking.id] = list(booking.service_ids)

    def add_status_change(self, change: BookingStatusChange) -> None:
        self._committed.status_history.append(change)

    def replace_branch_roster(
        self,
        branch_id: str,
        professionals: Sequence[Professional],
        periods: Dict[str, List[WorkingPeriod]],
        services: Sequence[ServiceRequirement],
    ) -> None:
        """Swap the professionals of a branch, their periods and the catalog entries."""
        for professional in [
            p for p in self._committed.professionals.values() if p.branch_id == branch_id
        ]:
            del self._committed.professionals[professional.id]
            self._committed.periods.pop(professional.id, None)

        for professional in professionals:
            self._committed.professionals[professional.id] = professional
            self._committed.periods[professional.id] = list(periods.get(professional.id, []))

        for service in services:
            self._committed.services[service.id] = service

    # Introspection used by fixtures, the CLI and tests.

    def professionals(self) -> List[Professional]:
        return sorted(self._committed.professionals.values(), key=lambda p: (p.created_at, p.id))

    def services(self) -> List[ServiceRequirement]:
        return list(self._committed.services.values())

    def periods(self) -> Dict[str, List[WorkingPeriod]]:
        return {pid: list(periods) for pid, periods in self._committed.periods.items()}

    def blocks(self) -> List[BlockedInterval]:
        return list(self._committed.blocks)

    def bookings(self) -> List[Booking]:
        return sorted(self._committed.bookings.values(), key=lambda b: (b.start, b.id))

    def booking_services(self, booking_id: str) -> List[str]:
        return list(self._committed.booking_services.get(booking_id, []))

    def status_history(self, booking_id: Optional[str] = None) -> List[BookingStatusChange]:
        return [
            change
            for change in self._committed.status_history
            if booking_id is None or change.booking_id == booking_id
        ]

    def confirmed_in(self, professional_id: str, window: TimeWindow) -> List[Booking]:
        return [
            booking
            for booking in self._committed.bookings.values()
            if booking.professional_id == professional_id
            and booking.is_confirmed
            and booking.window.overlaps(window)
        ]
