"""
Application service for computing bookable slots.

The service fetches working periods, blocks and bookings through the store
protocols and delegates the actual availability calculation to the
domain-level ``SlotCalculator`` and the fairness union. Every call re-reads
the stores; nothing is cached between requests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence, Tuple

from ..config import AppConfig
from ..domain.exceptions import (
    IncapableProfessionalError,
    InvalidRequestError,
    ProfessionalNotFoundError,
    ServiceNotFoundError,
    StoreUnavailableError,
)
from ..domain.fairness import (
    FairnessKey,
    ProfessionalSlots,
    single_professional_options,
    union_slots,
)
from ..domain.models import Professional, ServiceRequirement, Slot, SlotOption, TimeWindow
from ..domain.projector import day_bounds
from ..domain.slot_calculator import SlotCalculator
from .stores import OccupancyStore, RosterStore, ServiceCatalog

logger = logging.getLogger(__name__)


@dataclass
class SlotSearch:
    """Outcome of a slot search, including professionals left out."""
    options: List[SlotOption]
    duration_minutes: int
    grid_minutes: int
    timezone: str
    skipped_professional_ids: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when at least one professional's lookup failed or timed out."""
        return bool(self.skipped_professional_ids)


class AvailabilityService:
    """
    Orchestrates store reads and slot calculation for a branch.
    """

    def __init__(
        self,
        roster: RosterStore,
        occupancy: OccupancyStore,
        catalog: ServiceCatalog,
        config: AppConfig,
    ) -> None:
        self._roster = roster
        self._occupancy = occupancy
        self._catalog = catalog
        self._config = config

    def bound_to(self, scope) -> "AvailabilityService":
        """Return a copy that reads roster and occupancy through ``scope``."""
        return AvailabilityService(
            roster=scope,
            occupancy=scope,
            catalog=self._catalog,
            config=self._config,
        )

    async def get_available_slots(
        self,
        branch_id: str,
        day: date,
        service_ids: Sequence[str],
        professional_id: Optional[str] = None,
    ) -> List[SlotOption]:
        """Return the bookable slot options of a branch on ``day``."""
        search = await self.find_slots(
            branch_id=branch_id,
            day=day,
            service_ids=service_ids,
            professional_id=professional_id,
        )
        return search.options

    async def find_slots(
        self,
        *,
        branch_id: str,
        day: date,
        service_ids: Sequence[str],
        professional_id: Optional[str] = None,
    ) -> SlotSearch:
        """
        Compute slot options for one local date.

        With ``professional_id`` only that professional is considered.
        Otherwise every eligible professional is looked up concurrently and
        identical slots are merged with a fairness recommendation.
        """
        services = await self.resolve_services(service_ids)
        duration = self.total_duration(services)
        grid = self._config.granularity_for(branch_id)
        timezone = self._config.timezone_for(branch_id)
        calculator = SlotCalculator(grid_minutes=grid)

        if professional_id:
            professional = await self.resolve_professional(branch_id, professional_id, service_ids)
            entry, _ = await self._with_timeout(
                self._lookup(professional, day, duration, calculator, timezone),
                professional.id,
            )
            return SlotSearch(
                options=single_professional_options(entry),
                duration_minutes=duration,
                grid_minutes=grid,
                timezone=timezone,
            )

        professionals = await self._roster.get_eligible_professionals(branch_id, list(service_ids))
        if not professionals:
            logger.info("No eligible professionals in branch %s for services %s", branch_id, list(service_ids))
            return SlotSearch(options=[], duration_minutes=duration, grid_minutes=grid, timezone=timezone)

        entries, keys, skipped = await self._fan_out(professionals, day, duration, calculator, timezone)

        return SlotSearch(
            options=union_slots(entries, keys),
            duration_minutes=duration,
            grid_minutes=grid,
            timezone=timezone,
            skipped_professional_ids=skipped,
        )

    async def resolve_services(self, service_ids: Sequence[str]) -> List[ServiceRequirement]:
        """
        Look up the requested services.

        Raises:
            InvalidRequestError: If no service or a duplicate id is requested
            ServiceNotFoundError: If a service is unknown or inactive
        """
        requested = list(service_ids)
        if not requested:
            raise InvalidRequestError("At least one service must be requested")
        if len(set(requested)) != len(requested):
            raise InvalidRequestError(f"Duplicate service ids requested: {requested}")

        services = [s for s in await self._catalog.get_services(requested) if s.is_active]

        if len(services) != len(requested):
            found = {s.id for s in services}
            missing = ", ".join(sid for sid in requested if sid not in found)
            raise ServiceNotFoundError(f"One or more services not found or inactive: {missing}")

        return services

    @staticmethod
    def total_duration(services: Sequence[ServiceRequirement]) -> int:
        """Slot length: sum of duration plus buffer over all services."""
        return sum(service.total_minutes for service in services)

    async def resolve_professional(
        self,
        branch_id: str,
        professional_id: str,
        service_ids: Sequence[str],
    ) -> Professional:
        """
        Fetch a pinned professional and check it may serve the request.
        """
        professional = await self._roster.get_professional(professional_id)
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
        return professional

    async def get_professional_slots(
        self,
        professional: Professional,
        day: date,
        duration_minutes: int,
        calculator: SlotCalculator,
        timezone: str,
    ) -> List[Slot]:
        """
        Compute the slots of a single professional on ``day``.

        Blocks and confirmed bookings are queried over the whole local day and
        fetched concurrently with the working periods.
        """
        tz = professional.timezone or timezone
        bounds = day_bounds(day, tz)

        periods, blocks, bookings = await asyncio.gather(
            self._roster.get_working_periods(professional.id),
            self._occupancy.get_blocks(professional.id, bounds.start, bounds.end),
            self._occupancy.get_confirmed_bookings(professional.id, bounds.start, bounds.end),
        )

        occupancy: List[TimeWindow] = [block.window for block in blocks]
        occupancy.extend(booking.window for booking in bookings if booking.is_confirmed)

        return calculator.find_available_slots(day, periods, occupancy, duration_minutes, tz)

    async def _lookup(
        self,
        professional: Professional,
        day: date,
        duration_minutes: int,
        calculator: SlotCalculator,
        timezone: str,
    ) -> Tuple[ProfessionalSlots, FairnessKey]:
        bounds = day_bounds(day, professional.timezone or timezone)

        slots, booking_count = await asyncio.gather(
            self.get_professional_slots(professional, day, duration_minutes, calculator, timezone),
            self._occupancy.count_confirmed_bookings(professional.id, bounds.start, bounds.end),
        )

        entry = ProfessionalSlots(
            professional_id=professional.id,
            professional_name=professional.name,
            slots=slots,
        )
        key = FairnessKey(
            booking_count=booking_count,
            created_at=professional.created_at,
            professional_id=professional.id,
        )
        return entry, key

    async def _with_timeout(self, awaitable, professional_id: str):
        timeout = self._config.defaults.lookup_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(
                f"Availability lookup for professional {professional_id} timed out after {timeout}s"
            ) from exc

    async def _fan_out(
        self,
        professionals: Sequence[Professional],
        day: date,
        duration_minutes: int,
        calculator: SlotCalculator,
        timezone: str,
    ) -> Tuple[List[ProfessionalSlots], dict, List[str]]:
        """
        Run one lookup per professional with bounded concurrency.

        A lookup that fails or times out excludes that professional; the rest
        of the request still succeeds.
        """
        semaphore = asyncio.Semaphore(self._config.defaults.max_concurrent_lookups)

        async def bounded(professional: Professional):
            async with semaphore:
                return await self._with_timeout(
                    self._lookup(professional, day, duration_minutes, calculator, timezone),
                    professional.id,
                )

        results = await asyncio.gather(
            *(bounded(professional) for professional in professionals),
            return_exceptions=True,
        )

        entries: List[ProfessionalSlots] = []
        keys = {}
        skipped: List[str] = []

        for professional, result in zip(professionals, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Excluding professional %s from availability on %s: %s",
                    professional.id,
                    day,
                    result,
                )
                skipped.append(professional.id)
                continue
            if isinstance(result, BaseException):
                raise result

            entry, key = result
            entries.append(entry)
            keys[entry.professional_id] = key

        if skipped:
            logger.warning(
                "Availability for %s is degraded: %d of %d professional lookup(s) failed",
                day,
                len(skipped),
                len(professionals),
            )

        return entries, keys, skipped
