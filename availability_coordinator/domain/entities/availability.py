from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from availability_coordinator.domain.entities.selection_key import AppointmentMode


@dataclass(frozen=True)
class DaySummary:
    date: date
    open_slot_count: int


@dataclass(frozen=True)
class ProfessionalCard:
    id: str
    business_name: str | None = None
    avatar_url: str | None = None
    location_label: str | None = None
    offering_id: str | None = None
    location_id: str | None = None
    time_zone: str | None = None
    distance_miles: float | None = None
    is_primary: bool = False


@dataclass(frozen=True)
class AllowedModes:
    in_person: bool = True
    mobile: bool = True

    def allows(self, mode: AppointmentMode) -> bool:
        return self.in_person if mode is AppointmentMode.IN_PERSON else self.mobile

    def only_mode(self) -> AppointmentMode | None:
        """Return the single bookable mode, or None when both (or neither) are offered."""
        if self.in_person and not self.mobile:
            return AppointmentMode.IN_PERSON
        if self.mobile and not self.in_person:
            return AppointmentMode.MOBILE
        return None


@dataclass(frozen=True)
class AvailabilitySummary:
    professional_id: str
    service_id: str
    mode: AppointmentMode  # echoed by the server, authoritative
    time_zone: str
    location_id: str
    allowed_modes: AllowedModes
    days: tuple[DaySummary, ...]
    primary: ProfessionalCard
    secondaries: tuple[ProfessionalCard, ...] = ()
    waitlist_supported: bool = False
    offering_id: str | None = None
    media_id: str | None = None
    service_name: str | None = None
    duration_minutes: int | None = None
    step_minutes: int | None = None
    lead_time_minutes: int | None = None
    max_days_ahead: int | None = None

    def has_day(self, day: date) -> bool:
        return any(d.date == day for d in self.days)

    def professional(self, professional_id: str) -> ProfessionalCard | None:
        if self.primary.id == professional_id:
            return self.primary
        for card in self.secondaries:
            if card.id == professional_id:
                return card
        return None


@dataclass(frozen=True)
class DaySlots:
    professional_id: str
    date: date
    time_zone: str | None
    slots: tuple[datetime, ...]

