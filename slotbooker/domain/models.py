"""
Domain models for time windows, rosters, slots and bookings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import List, Optional, Tuple

from pendulum import DateTime


@dataclass(frozen=True)
class TimeWindow:
    """
    Represents an immutable half-open time window ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeWindow") -> bool:
        """Check if this window overlaps with another. Touching windows do not."""
        return self.start < other.end and self.end > other.start

    def intersect(self, other: "TimeWindow") -> "TimeWindow | None":
        """
        Calculate the intersection of two time windows.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        start = max(self.start, other.start)
        end = min(self.end, other.end)

        return TimeWindow(start=start, end=end)

    def contains(self, other: "TimeWindow") -> bool:
        """Check if ``other`` lies entirely inside this window."""
        return self.start <= other.start and other.end <= self.end

    def shift(self, minutes: int) -> "TimeWindow":
        """Move the window by ``minutes`` (negative moves it earlier)."""
        delta = timedelta(minutes=minutes)
        return TimeWindow(start=self.start + delta, end=self.end + delta)

    def key(self) -> Tuple[DateTime, DateTime]:
        return (self.start, self.end)

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class Slot(TimeWindow):
    """A candidate booking window of exactly the required duration."""

    @classmethod
    def starting_at(cls, start: DateTime, duration_minutes: int) -> "Slot":
        return cls(start=start, end=start + timedelta(minutes=duration_minutes))


@dataclass(frozen=True)
class WorkingPeriod:
    """
    Recurring weekly working hours of one professional.

    ``weekday`` uses 0=Sunday ... 6=Saturday. Minutes count from local
    midnight; ``end_minutes`` may be 1440 (the following midnight).
    """
    weekday: int
    start_minutes: int
    end_minutes: int

    def __post_init__(self):
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"Weekday must be between 0 and 6, got {self.weekday}")
        if not 0 <= self.start_minutes < self.end_minutes <= 1440:
            raise ValueError(
                f"Invalid working period {self.start_minutes}-{self.end_minutes}: "
                "minutes must satisfy 0 <= start < end <= 1440"
            )


@dataclass(frozen=True)
class BlockedInterval:
    """Ad-hoc unavailability of a professional (vacation, break)."""
    professional_id: str
    window: TimeWindow
    reason: Optional[str] = None
    id: Optional[str] = None


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Customer name must not be empty")


@dataclass
class Booking:
    """
    A committed appointment.

    Only bookings in ``CONFIRMED`` status count as occupancy.
    """
    id: str
    branch_id: str
    professional_id: str
    window: TimeWindow
    customer: CustomerInfo
    status: BookingStatus = BookingStatus.CONFIRMED
    service_ids: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    created_at: Optional[DateTime] = None

    @property
    def start(self) -> DateTime:
        return self.window.start

    @property
    def end(self) -> DateTime:
        return self.window.end

    @property
    def is_confirmed(self) -> bool:
        return self.status is BookingStatus.CONFIRMED


@dataclass(frozen=True)
class BookingStatusChange:
    booking_id: str
    to_status: BookingStatus
    at: DateTime
    from_status: Optional[BookingStatus] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class Professional:
    id: str
    name: str
    branch_id: str
    created_at: DateTime
    service_ids: frozenset = frozenset()
    is_active: bool = True
    timezone: Optional[str] = None

    def can_perform(self, service_ids) -> bool:
        """Check capability for every requested service; partial capability does not count."""
        return set(service_ids).issubset(self.service_ids)


@dataclass(frozen=True)
class ServiceRequirement:
    id: str
    duration_minutes: int
    buffer_minutes: int = 0
    is_active: bool = True
    name: str = ""

    @property
    def total_minutes(self) -> int:
        return self.duration_minutes + self.buffer_minutes


@dataclass(frozen=True)
class ProfessionalOption:
    professional_id: str
    professional_name: str


@dataclass
class SlotOption:
    """
    A bookable window together with every professional offering it.
    """
    start: DateTime
    end: DateTime
    professional_options: List[ProfessionalOption]
    recommended_professional_id: str

    def professional_ids(self) -> List[str]:
        return [option.professional_id for option in self.professional_options]

    def format_display(self, timezone: str) -> str:
        start = self.start.in_timezone(timezone)
        end = self.end.in_timezone(timezone)
        return f"{start.format('ddd DD.MM.YYYY')} | {start.format('HH:mm')} - {end.format('HH:mm')}"
