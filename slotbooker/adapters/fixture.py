"""
YAML fixture files describing a roster, a service catalog, occupancy and
the booking status history.

A fixture seeds an ``InMemoryStore`` for demo runs and tests, and booking
commands write the updated state back to it.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from ..domain.models import (
    BlockedInterval,
    Booking,
    BookingStatus,
    BookingStatusChange,
    CustomerInfo,
    Professional,
    ServiceRequirement,
    TimeWindow,
    WorkingPeriod,
)


def _parse_clock(value: Union[int, str]) -> int:
    """Accept minutes since midnight or an ``HH:MM`` string (``24:00`` allowed)."""
    if isinstance(value, int):
        return value
    try:
        hours, minutes = value.strip().split(":")
        total = int(hours) * 60 + int(minutes)
    except ValueError as exc:
        raise ValueError(f"Expected HH:MM or minutes, got {value!r}") from exc
    return total


def _format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class PeriodEntry(BaseModel):
    weekday: int
    start: int
    end: int

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_clock(cls, value: Union[int, str]) -> int:
        return _parse_clock(value)

    def to_domain(self) -> WorkingPeriod:
        return WorkingPeriod(weekday=self.weekday, start_minutes=self.start, end_minutes=self.end)


class ProfessionalEntry(BaseModel):
    id: str
    name: str
    branch_id: str
    created_at: datetime
    services: List[str] = Field(default_factory=list)
    active: bool = True
    timezone: Optional[str] = None
    periods: List[PeriodEntry] = Field(default_factory=list)

    def to_domain(self) -> Professional:
        return Professional(
            id=self.id,
            name=self.name,
            branch_id=self.branch_id,
            created_at=pendulum.instance(self.created_at),
            service_ids=frozenset(self.services),
            is_active=self.active,
            timezone=self.timezone,
        )


class ServiceEntry(BaseModel):
    id: str
    name: str = ""
    duration_minutes: int
    buffer_minutes: int = 0
    active: bool = True

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("duration_minutes must be greater than zero")
        return value

    @field_validator("buffer_minutes")
    @classmethod
    def validate_buffer(cls, value: int) -> int:
        if value < 0:
            raise ValueError("buffer_minutes must not be negative")
        return value

    def to_domain(self) -> ServiceRequirement:
        return ServiceRequirement(
            id=self.id,
            name=self.name,
            duration_minutes=self.duration_minutes,
            buffer_minutes=self.buffer_minutes,
            is_active=self.active,
        )


class _WindowEntry(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self):
        if self.end <= self.start:
            raise ValueError(f"end must be after start ({self.start} - {self.end})")
        return self

    def window(self) -> TimeWindow:
        return TimeWindow(start=pendulum.instance(self.start), end=pendulum.instance(self.end))


class BlockEntry(_WindowEntry):
    professional_id: str
    id: Optional[str] = None
    reason: Optional[str] = None

    def to_domain(self) -> BlockedInterval:
        return BlockedInterval(
            professional_id=self.professional_id,
            window=self.window(),
            reason=self.reason,
            id=self.id,
        )


class CustomerEntry(BaseModel):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class BookingEntry(_WindowEntry):
    id: str
    branch_id: str
    professional_id: str
    customer: CustomerEntry
    status: BookingStatus = BookingStatus.CONFIRMED
    service_ids: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_domain(self) -> Booking:
        return Booking(
            id=self.id,
            branch_id=self.branch_id,
            professional_id=self.professional_id,
            window=self.window(),
            customer=CustomerInfo(
                name=self.customer.name,
                phone=self.customer.phone,
                email=self.customer.email,
            ),
            status=self.status,
            service_ids=list(self.service_ids),
            notes=self.notes,
            created_at=pendulum.instance(self.created_at) if self.created_at else None,
        )


class StatusChangeEntry(BaseModel):
    booking_id: str
    to_status: BookingStatus
    at: datetime
    from_status: Optional[BookingStatus] = None
    reason: Optional[str] = None

    def to_domain(self) -> BookingStatusChange:
        return BookingStatusChange(
            booking_id=self.booking_id,
            to_status=self.to_status,
            at=pendulum.instance(self.at),
            from_status=self.from_status,
            reason=self.reason,
        )


class Fixture(BaseModel):
    """Complete seed data for an in-memory store."""
    professionals: List[ProfessionalEntry] = Field(default_factory=list)
    services: List[ServiceEntry] = Field(default_factory=list)
    blocks: List[BlockEntry] = Field(default_factory=list)
    bookings: List[BookingEntry] = Field(default_factory=list)
    status_history: List[StatusChangeEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_references(self):
        """Ensure ids are unique and references resolve."""
        professional_ids = {p.id for p in self.professionals}
        if len(professional_ids) != len(self.professionals):
            raise ValueError("Duplicate professional ids in fixture")

        service_ids = {s.id for s in self.services}
        for professional in self.professionals:
            unknown = set(professional.services) - service_ids
            if unknown:
                raise ValueError(
                    f"Professional {professional.id} references unknown services: {sorted(unknown)}"
                )

        for entry in [*self.blocks, *self.bookings]:
            if entry.professional_id not in professional_ids:
                raise ValueError(f"Unknown professional in fixture: {entry.professional_id}")

        booking_ids = {b.id for b in self.bookings}
        for change in self.status_history:
            if change.booking_id not in booking_ids:
                raise ValueError(f"Status history references unknown booking: {change.booking_id}")

        return self

    def populate(self, store) -> None:
        """Load every entry into an ``InMemoryStore``."""
        for service in self.services:
            store.add_service(service.to_domain())

        for professional in self.professionals:
            store.add_professional(professional.to_domain())
            for period in professional.periods:
                store.add_working_period(professional.id, period.to_domain())

        for block in self.blocks:
            store.add_block(block.to_domain())

        for booking in self.bookings:
            store.add_booking(booking.to_domain())

        for change in self.status_history:
            store.add_status_change(change.to_domain())

    @classmethod
    def from_store(cls, store) -> "Fixture":
        """Snapshot the committed state of an ``InMemoryStore``."""
        periods = store.periods()

        return cls(
            services=[
                ServiceEntry(
                    id=s.id,
                    name=s.name,
                    duration_minutes=s.duration_minutes,
                    buffer_minutes=s.buffer_minutes,
                    active=s.is_active,
                )
                for s in store.services()
            ],
            professionals=[
                ProfessionalEntry(
                    id=p.id,
                    name=p.name,
                    branch_id=p.branch_id,
                    created_at=p.created_at,
                    services=sorted(p.service_ids),
                    active=p.is_active,
                    timezone=p.timezone,
                    periods=[
                        PeriodEntry(weekday=wp.weekday, start=wp.start_minutes, end=wp.end_minutes)
                        for wp in periods.get(p.id, [])
                    ],
                )
                for p in store.professionals()
            ],
            blocks=[
                BlockEntry(
                    id=b.id,
                    professional_id=b.professional_id,
                    start=b.window.start,
                    end=b.window.end,
                    reason=b.reason,
                )
                for b in store.blocks()
            ],
            bookings=[
                BookingEntry(
                    id=b.id,
                    branch_id=b.branch_id,
                    professional_id=b.professional_id,
                    start=b.start,
                    end=b.end,
                    customer=CustomerEntry(
                        name=b.customer.name,
                        phone=b.customer.phone,
                        email=b.customer.email,
                    ),
                    status=b.status,
                    # The link table keeps the order the services are performed in.
                    service_ids=store.booking_services(b.id) or list(b.service_ids),
                    notes=b.notes,
                    created_at=b.created_at,
                )
                for b in store.bookings()
            ],
            status_history=[
                StatusChangeEntry(
                    booking_id=change.booking_id,
                    to_status=change.to_status,
                    at=change.at,
                    from_status=change.from_status,
                    reason=change.reason,
                )
                for change in store.status_history()
            ],
        )


def load_fixture(path: Path) -> Fixture:
    """
    Read and validate a fixture file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the YAML or its content is invalid
    """
    if not path.exists():
        raise FileNotFoundError(f"Fixture file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError("Fixture file must contain a mapping at the root level.")

    return Fixture(**data)


def save_fixture(fixture: Fixture, path: Path) -> None:
    """Write a fixture as YAML, with clock times in HH:MM form."""
    data = fixture.model_dump(mode="json", exclude_none=True)

    for professional in data.get("professionals", []):
        for period in professional.get("periods", []):
            period["start"] = _format_clock(period["start"])
            period["end"] = _format_clock(period["end"])

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
