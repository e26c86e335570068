"""
Booking commit protocol.

All checks that decide whether a booking may be created run inside one
store transaction, against the live data seen through the transaction
scope. The transaction is the only thing preventing two callers from
committing the same professional to overlapping time.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import Callable, Optional, Sequence

import pendulum
from pendulum import DateTime

from ..config import AppConfig
from ..domain.exceptions import (
    BookingConflictError,
    IncapableProfessionalError,
    InvalidRequestError,
    LateCancellationError,
    PastBookingError,
    ProfessionalNotFoundError,
)
from ..domain.models import (
    Booking,
    BookingStatus,
    BookingStatusChange,
    CustomerInfo,
    TimeWindow,
)
from .availability import AvailabilityService
from .stores import TransactionalStore, TransactionScope

logger = logging.getLogger(__name__)


class BookingService:
    """
    Commits and cancels bookings against a transactional store.
    """

    def __init__(
        self,
        store: TransactionalStore,
        availability: AvailabilityService,
        config: AppConfig,
        clock: Callable[[], DateTime] = pendulum.now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._store = store
        self._availability = availability
        self._config = config
        self._clock = clock
        self._id_factory = id_factory

    async def commit_booking(
        self,
        *,
        branch_id: str,
        service_ids: Sequence[str],
        day: date,
        start: DateTime,
        customer: CustomerInfo,
        professional_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Validate and persist a booking.

        Args:
            branch_id: Branch the booking belongs to
            service_ids: Requested services, in the order they are performed
            day: Local calendar date of the slot (used for automatic selection)
            start: Absolute start instant
            customer: Customer contact data
            professional_id: Pinned professional, or None to use the fairness pick
            notes: Free text stored with the booking

        Returns:
            The confirmed booking

        Raises:
            InvalidRequestError: For unknown services, past starts, incapable professionals
            BookingConflictError: If the time is no longer free
            StoreUnavailableError: If the transaction could not be run
        """
        services = await self._availability.resolve_services(service_ids)
        duration = self._availability.total_duration(services)
        window = TimeWindow(start=start, end=start + timedelta(minutes=duration))

        self._check_not_in_past(start)

        async with self._store.transaction() as scope:
            booking = await self._commit_in_scope(
                scope,
                branch_id=branch_id,
                service_ids=list(service_ids),
                day=day,
                window=window,
                customer=customer,
                professional_id=professional_id,
                notes=notes,
            )

        logger.info(
            "Booking %s confirmed for professional %s at %s",
            booking.id,
            booking.professional_id,
            booking.window,
        )
        return booking

    async def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        """
        Move a confirmed booking to canceled. The record itself is kept.

        Raises:
            InvalidRequestError: If the booking is unknown or already canceled
            LateCancellationError: If the start is closer than ``min_cancel_notice_minutes``
        """
        async with self._store.transaction() as scope:
            booking = await scope.get_booking(booking_id)
            if booking is None:
                raise InvalidRequestError(f"Booking not found: {booking_id}")
            if booking.status is BookingStatus.CANCELED:
                raise InvalidRequestError(f"Booking {booking_id} is already canceled")
            self._check_cancel_notice(booking)

            updated = await scope.update_booking_status(booking_id, BookingStatus.CANCELED)
            await scope.record_status_change(
                BookingStatusChange(
                    booking_id=booking_id,
                    from_status=BookingStatus.CONFIRMED,
                    to_status=BookingStatus.CANCELED,
                    reason=reason or "Canceled",
                    at=self._clock(),
                )
            )

        logger.info("Booking %s canceled", booking_id)
        return updated

    def _check_not_in_past(self, start: DateTime) -> None:
        tolerance = timedelta(minutes=self._config.defaults.past_tolerance_minutes)
        if start < self._clock() - tolerance:
            raise PastBookingError(f"Cannot create a booking in the past: {start}")

    def _check_cancel_notice(self, booking: Booking) -> None:
        notice = self._config.defaults.min_cancel_notice_minutes
        if notice and booking.start - self._clock() < timedelta(minutes=notice):
            raise LateCancellationError(
                f"Booking {booking.id} can only be canceled up to {notice} minutes before it starts"
            )

    async def _commit_in_scope(
        self,
        scope: TransactionScope,
        *,
        branch_id: str,
        service_ids: list,
        day: date,
        window: TimeWindow,
        customer: CustomerInfo,
        professional_id: Optional[str],
        notes: Optional[str],
    ) -> Booking:
        if not professional_id:
            professional_id = await self._pick_professional(scope, branch_id, service_ids, day, window)

        professional = await scope.get_professional(professional_id)
        if professional is None:
            raise ProfessionalNotFoundError(f"Professional not found: {professional_id}")
        if professional.branch_id != branch_id or not professional.is_active:
            raise InvalidRequestError(
                f"Professional {professional_id} is not an active member of branch {branch_id}"
            )
        if not professional.can_perform(service_ids):
            raise IncapableProfessionalError(
                f"Professional {professional_id} cannot perform all requested services"
            )

        blocks = await scope.get_blocks(professional_id, window.start, window.end)
        if any(block.window.overlaps(window) for block in blocks):
            logger.info("Conflict: %s is blocked during %s", professional_id, window)
            raise BookingConflictError("Time slot is no longer available")

        bookings = await scope.get_confirmed_bookings(professional_id, window.start, window.end)
        if any(existing.window.overlaps(window) for existing in bookings):
            logger.info("Conflict: %s already booked during %s", professional_id, window)
            raise BookingConflictError("Time slot is no longer available")

        booking = await scope.create_booking(
            Booking(
                id=self._id_factory(),
                branch_id=branch_id,
                professional_id=professional_id,
                window=window,
                customer=customer,
                status=BookingStatus.CONFIRMED,
                service_ids=list(service_ids),
                notes=notes,
                created_at=self._clock(),
            )
        )
        await scope.add_booking_services(booking.id, service_ids)
        await scope.record_status_change(
            BookingStatusChange(
                booking_id=booking.id,
                to_status=BookingStatus.CONFIRMED,
                reason="Booking created",
                at=self._clock(),
            )
        )
        return booking

    async def _pick_professional(
        self,
        scope: TransactionScope,
        branch_id: str,
        service_ids: list,
        day: date,
        window: TimeWindow,
    ) -> str:
        """
        Recompute the slot union inside the transaction and take the
        recommended professional for the requested start.
        """
        availability = self._availability.bound_to(scope)
        options = await availability.get_available_slots(branch_id, day, service_ids)

        for option in options:
            if option.start == window.start and option.end == window.end:
                logger.debug(
                    "Auto-selected professional %s for %s",
                    option.recommended_professional_id,
                    window,
                )
                return option.recommended_professional_id

        raise BookingConflictError("Selected time slot is no longer available")
