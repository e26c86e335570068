"""
Placement of fixed-length slots on a time grid.

Grid boundaries are counted from the Unix epoch, so they do not depend on
where a free window happens to start.
"""

from datetime import timedelta
from typing import Iterable, List

import pendulum
from pendulum import DateTime

from .models import Slot, TimeWindow

EPOCH = pendulum.datetime(1970, 1, 1, tz="UTC")

_MICROSECONDS_PER_MINUTE = 60 * 1_000_000


def _to_epoch_microseconds(instant: DateTime) -> int:
    return instant.int_timestamp * 1_000_000 + instant.microsecond


def _from_epoch_microseconds(value: int) -> DateTime:
    return EPOCH + timedelta(microseconds=value)


def _grid_microseconds(grid_minutes: int) -> int:
    if grid_minutes <= 0:
        raise ValueError(f"Grid size must be positive, got {grid_minutes}")
    return grid_minutes * _MICROSECONDS_PER_MINUTE


def round_up_to_grid(instant: DateTime, grid_minutes: int) -> DateTime:
    """Round up to the next grid boundary. Instants on a boundary are unchanged."""
    grid = _grid_microseconds(grid_minutes)
    value = _to_epoch_microseconds(instant)
    return _from_epoch_microseconds(-(-value // grid) * grid)


def round_down_to_grid(instant: DateTime, grid_minutes: int) -> DateTime:
    """Round down to the previous grid boundary."""
    grid = _grid_microseconds(grid_minutes)
    value = _to_epoch_microseconds(instant)
    return _from_epoch_microseconds(value // grid * grid)


def generate_grid_slots(
    free_windows: Iterable[TimeWindow],
    duration_minutes: int,
    grid_minutes: int,
) -> List[Slot]:
    """
    Emit every grid-aligned slot of ``duration_minutes`` that fits in a free window.

    Windows are handled independently and their slots concatenated in input
    order; slots from adjacent windows are never merged. A window too short
    for a single slot yields nothing.
    """
    if duration_minutes <= 0:
        raise ValueError(f"Duration must be positive, got {duration_minutes}")

    grid = _grid_microseconds(grid_minutes)
    duration = duration_minutes * _MICROSECONDS_PER_MINUTE

    slots: List[Slot] = []

    for window in free_windows:
        window_start = _to_epoch_microseconds(window.start)
        window_end = _to_epoch_microseconds(window.end)

        current = -(-window_start // grid) * grid
        last_start = (window_end - duration) // grid * grid

        while current <= last_start:
            start = _from_epoch_microseconds(current)
            slots.append(Slot(start=start, end=start + timedelta(microseconds=duration)))
            current += grid

    return slots
