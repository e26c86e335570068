"""
Union of per-professional slots with a fairness recommendation.

When the caller does not pin a professional, identical slots offered by
several professionals collapse into one ``SlotOption``. The recommended
professional is the one with the fewest confirmed bookings on the day,
then the earliest registered, then the smallest id.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from pendulum import DateTime

from .models import ProfessionalOption, Slot, SlotOption


@dataclass(frozen=True, order=True)
class FairnessKey:
    """Sort key of a professional; smaller ranks first."""
    booking_count: int
    created_at: DateTime
    professional_id: str


@dataclass
class ProfessionalSlots:
    """Slots computed for a single professional."""
    professional_id: str
    professional_name: str
    slots: List[Slot]


def rank_professionals(
    options: Iterable[ProfessionalOption],
    keys: Mapping[str, FairnessKey],
) -> List[ProfessionalOption]:
    """Order professional options by their fairness key."""
    return sorted(options, key=lambda option: keys[option.professional_id])


def union_slots(
    professional_slots: Sequence[ProfessionalSlots],
    keys: Mapping[str, FairnessKey],
) -> List[SlotOption]:
    """
    Group slots by exact ``(start, end)`` and attach ranked professional options.

    Args:
        professional_slots: Slots per professional
        keys: Fairness key for every professional in ``professional_slots``

    Returns:
        Slot options sorted by start, each with a recommended professional
    """
    grouped: Dict[Tuple[DateTime, DateTime], List[ProfessionalOption]] = {}

    for entry in professional_slots:
        option = ProfessionalOption(
            professional_id=entry.professional_id,
            professional_name=entry.professional_name,
        )
        for slot in entry.slots:
            grouped.setdefault(slot.key(), []).append(option)

    result: List[SlotOption] = []

    for (start, end), options in grouped.items():
        ranked = rank_professionals(options, keys)
        result.append(
            SlotOption(
                start=start,
                end=end,
                professional_options=ranked,
                recommended_professional_id=ranked[0].professional_id,
            )
        )

    result.sort(key=lambda option: (option.start, option.end))
    return result


def single_professional_options(entry: ProfessionalSlots) -> List[SlotOption]:
    """Wrap the slots of a pinned professional without any ranking."""
    option = ProfessionalOption(
        professional_id=entry.professional_id,
        professional_name=entry.professional_name,
    )
    return [
        SlotOption(
            start=slot.start,
            end=slot.end,
            professional_options=[option],
            recommended_professional_id=entry.professional_id,
        )
        for slot in entry.slots
    ]
