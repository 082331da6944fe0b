from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from availability_coordinator.domain.entities.selection_key import AppointmentMode


class TimeBucket(str, Enum):
    MORNING = "MORNING"  # before noon
    AFTERNOON = "AFTERNOON"  # noon to five
    EVENING = "EVENING"  # after five

    @classmethod
    def for_hour(cls, hour: int) -> TimeBucket:
        if hour < 12:
            return cls.MORNING
        if hour < 17:
            return cls.AFTERNOON
        return cls.EVENING


BUCKET_CORRECTION_ORDER = (TimeBucket.AFTERNOON, TimeBucket.MORNING, TimeBucket.EVENING)


@dataclass(frozen=True)
class SelectedSlot:
    professional_id: str
    offering_id: str
    slot_instant: datetime


@dataclass(frozen=True)
class SelectionState:
    mode: AppointmentMode = AppointmentMode.IN_PERSON
    mode_locked: bool = False  # service offered in a single mode
    selected_day: date | None = None
    time_bucket: TimeBucket = TimeBucket.AFTERNOON
    bucket_explicit: bool = False
    selected_slot: SelectedSlot | None = None
