"""
Projection of weekly recurring working hours onto absolute time.

Wall-clock times are resolved through the timezone database for the specific
calendar date, so DST transitions are honoured. Start and end of a period are
resolved independently.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List

import pendulum
from pendulum import DateTime

from .models import TimeWindow, WorkingPeriod

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 1440


def local_date(value: date | datetime, timezone: str) -> date:
    """
    Return the calendar date observed in ``timezone``.

    Plain dates are taken as already local. Datetimes are converted into the
    timezone first (naive ones are read as UTC).
    """
    if isinstance(value, datetime):
        return pendulum.instance(value).in_timezone(timezone).date()
    return value


def local_weekday(day: date) -> int:
    """Weekday of a local date with 0=Sunday ... 6=Saturday."""
    return day.isoweekday() % 7


def local_minutes_to_instant(day: date, minutes: int, timezone: str) -> DateTime:
    """
    Resolve ``minutes`` after local midnight of ``day`` to an absolute instant.

    1440 resolves to the following local midnight.
    """
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise ValueError(f"Minutes must be between 0 and {MINUTES_PER_DAY}, got {minutes}")

    if minutes == MINUTES_PER_DAY:
        day = day + timedelta(days=1)
        minutes = 0

    hour, minute = divmod(minutes, 60)
    return pendulum.datetime(day.year, day.month, day.day, hour, minute, tz=timezone)


def day_bounds(day: date, timezone: str) -> TimeWindow:
    """Local midnight to the following local midnight of ``day``."""
    return TimeWindow(
        start=local_minutes_to_instant(day, 0, timezone),
        end=local_minutes_to_instant(day, MINUTES_PER_DAY, timezone),
    )


def project_working_periods(
    day: date | datetime,
    periods: Iterable[WorkingPeriod],
    timezone: str,
) -> List[TimeWindow]:
    """
    Convert the working periods matching the local weekday of ``day`` into
    absolute time windows, sorted by start.
    """
    local_day = local_date(day, timezone)
    weekday = local_weekday(local_day)

    windows: List[TimeWindow] = []

    for period in periods:
        if period.weekday != weekday:
            continue

        start = local_minutes_to_instant(local_day, period.start_minutes, timezone)
        end = local_minutes_to_instant(local_day, period.end_minutes, timezone)

        if start >= end:
            # Only possible when the whole period falls into a DST gap.
            logger.debug(
                "Skipping working period %s-%s on %s (%s): collapses after DST resolution",
                period.start_minutes,
                period.end_minutes,
                local_day,
                timezone,
            )
            continue

        windows.append(TimeWindow(start=start, end=end))

    windows.sort(key=lambda w: w.start)

    logger.debug("Projected %d working window(s) for %s in %s", len(windows), local_day, timezone)

    return windows
