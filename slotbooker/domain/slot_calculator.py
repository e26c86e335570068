"""
Core business logic for calculating the bookable slots of one professional.

This is pure domain logic without any external dependencies (no API calls,
no database, no I/O). Fetching periods and occupancy is the service layer's
job.
"""

import logging
from datetime import date, datetime
from typing import Iterable, List

from .models import Slot, TimeWindow, WorkingPeriod
from .projector import project_working_periods
from .slot_grid import generate_grid_slots
from .windows import subtract

logger = logging.getLogger(__name__)


class SlotCalculator:
    """
    Calculates grid-aligned slots for a single professional.

    Algorithm:
    1. Project the weekly working periods onto the requested local date
    2. Subtract every occupancy entry (blocks and confirmed bookings)
    3. Sort the remaining free windows by start
    4. Place slots of the required duration on the grid
    """

    def __init__(self, grid_minutes: int = 15):
        if grid_minutes <= 0:
            raise ValueError(f"Grid size must be positive, got {grid_minutes}")
        self.grid_minutes = grid_minutes

    def find_available_slots(
        self,
        day: date | datetime,
        periods: Iterable[WorkingPeriod],
        occupancy: Iterable[TimeWindow],
        duration_minutes: int,
        timezone: str,
    ) -> List[Slot]:
        """
        Find every slot of ``duration_minutes`` on ``day``.

        Args:
            day: Calendar date (local to ``timezone``) or an instant on it
            periods: The professional's weekly working periods
            occupancy: Blocks and confirmed bookings around that day
            duration_minutes: Total length of the slot (durations plus buffers)
            timezone: IANA timezone the working periods are expressed in

        Returns:
            Slots ordered by start
        """
        working_windows = project_working_periods(day, periods, timezone)

        if not working_windows:
            return []

        free = self.free_windows(working_windows, occupancy)
        slots = generate_grid_slots(free, duration_minutes, self.grid_minutes)

        logger.debug(
            "%d free window(s) produced %d slot(s) of %d min on a %d min grid",
            len(free),
            len(slots),
            duration_minutes,
            self.grid_minutes,
        )

        return slots

    @staticmethod
    def free_windows(
        working_windows: Iterable[TimeWindow],
        occupancy: Iterable[TimeWindow],
    ) -> List[TimeWindow]:
        """
        Subtract all occupancy entries from each working window.

        Example:
        Working: 09:00 - 17:00
        Occupied: [10:00-11:00, 14:00-15:00]
        Result: [09:00-10:00, 11:00-14:00, 15:00-17:00]
        """
        occupied = list(occupancy)
        free: List[TimeWindow] = []

        for working_window in working_windows:
            free.extend(subtract(working_window, occupied))

        free.sort(key=lambda w: w.start)
        return free
