"""
Service layer helpers that orchestrate stores and domain logic.
"""

from .availability import AvailabilityService, SlotSearch
from .booking import BookingService
from .stores import (
    OccupancyStore,
    RosterStore,
    ServiceCatalog,
    TransactionalStore,
    TransactionScope,
)

__all__ = [
    "AvailabilityService",
    "BookingService",
    "OccupancyStore",
    "RosterStore",
    "ServiceCatalog",
    "SlotSearch",
    "TransactionScope",
    "TransactionalStore",
]
