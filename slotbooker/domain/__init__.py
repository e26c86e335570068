"""
Domain layer - Pure business logic without external dependencies.
"""

from .fairness import FairnessKey, ProfessionalSlots, union_slots
from .models import (
    BlockedInterval,
    Booking,
    BookingStatus,
    CustomerInfo,
    Professional,
    ProfessionalOption,
    ServiceRequirement,
    Slot,
    SlotOption,
    TimeWindow,
    WorkingPeriod,
)
from .slot_calculator import SlotCalculator

__all__ = [
    "BlockedInterval",
    "Booking",
    "BookingStatus",
    "CustomerInfo",
    "FairnessKey",
    "Professional",
    "ProfessionalOption",
    "ProfessionalSlots",
    "ServiceRequirement",
    "Slot",
    "SlotCalculator",
    "SlotOption",
    "TimeWindow",
    "WorkingPeriod",
    "union_slots",
]
