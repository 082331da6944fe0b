from __future__ import annotations

import datetime as dt
from dataclasses import replace
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from availability_coordinator.application.exceptions import BackendContractError
from availability_coordinator.domain.entities.availability import (
    AllowedModes,
    AvailabilitySummary,
    DaySlots,
    DaySummary,
    ProfessionalCard,
)
from availability_coordinator.domain.entities.hold import Hold
from availability_coordinator.domain.entities.selection_key import AppointmentMode
from availability_coordinator.domain.entities.waitlist import WaitlistEntry


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _to_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _unique_instants(values: list[dt.datetime]) -> tuple[dt.datetime, ...]:
    seen: set[dt.datetime] = set()
    ordered: list[dt.datetime] = []
    for value in values:
        instant = _to_utc(value)
        if instant in seen:
            continue
        seen.add(instant)
        ordered.append(instant)
    return tuple(ordered)


def _mode(value: object) -> str:
    if AppointmentMode.from_wire(value) is None:
        raise ValueError(f"unknown location type: {value!r}")
    return str(value)


class ProCardDTO(WireModel):
    id: str
    business_name: str | None = None
    avatar_url: str | None = None
    location: str | None = None
    offering_id: str | None = None
    location_id: str | None = None
    time_zone: str | None = None
    distance_miles: float | None = None

    def to_entity(self, is_primary: bool = False) -> ProfessionalCard:
        return ProfessionalCard(
            id=self.id,
            business_name=self.business_name,
            avatar_url=self.avatar_url,
            location_label=self.location,
            offering_id=self.offering_id,
            location_id=self.location_id,
            time_zone=self.time_zone,
            distance_miles=self.distance_miles,
            is_primary=is_primary,
        )


class AvailableDayDTO(WireModel):
    day: dt.date = Field(alias="date")
    slot_count: int = Field(ge=0)


class OfferingDTO(WireModel):
    id: str
    offers_in_salon: bool = True
    offers_mobile: bool = True


class AvailabilitySummaryDTO(WireModel):
    ok: Literal[True]
    mode: Literal["SUMMARY"]
    media_id: str | None = None
    service_id: str
    professional_id: str
    service_name: str | None = None
    location_type: str
    location_id: str
    time_zone: str
    step_minutes: int | None = None
    lead_time_minutes: int | None = None
    max_days_ahead: int | None = None
    duration_minutes: int | None = None
    primary_pro: ProCardDTO
    available_days: list[AvailableDayDTO] = Field(default_factory=list)
    other_pros: list[ProCardDTO] = Field(default_factory=list)
    waitlist_supported: bool = False
    offering: OfferingDTO | None = None

    @field_validator("location_type")
    @classmethod
    def _known_location_type(cls, value: str) -> str:
        return _mode(value)

    def to_entity(self) -> AvailabilitySummary:
        mode = AppointmentMode.from_wire(self.location_type) or AppointmentMode.IN_PERSON
        allowed = (
            AllowedModes(in_person=self.offering.offers_in_salon, mobile=self.offering.offers_mobile)
            if self.offering
            else AllowedModes()
        )
        # The primary professional is always booked at the summary's location.
        primary = replace(
            self.primary_pro.to_entity(is_primary=True),
            location_id=self.location_id,
            time_zone=self.primary_pro.time_zone or self.time_zone,
        )
        return AvailabilitySummary(
            professional_id=self.professional_id,
            service_id=self.service_id,
            mode=mode,
            time_zone=self.time_zone,
            location_id=self.location_id,
            allowed_modes=allowed,
            days=tuple(DaySummary(date=d.day, open_slot_count=d.slot_count) for d in self.available_days),
            primary=primary,
            secondaries=tuple(p.to_entity() for p in self.other_pros),
            waitlist_supported=self.waitlist_supported,
            offering_id=(self.offering.id if self.offering else None) or self.primary_pro.offering_id,
            media_id=self.media_id,
            service_name=self.service_name,
            duration_minutes=self.duration_minutes,
            step_minutes=self.step_minutes,
            lead_time_minutes=self.lead_time_minutes,
            max_days_ahead=self.max_days_ahead,
        )


class DaySlotsDTO(WireModel):
    ok: Literal[True]
    mode: Literal["DAY"]
    professional_id: str
    day: dt.date = Field(alias="date")
    time_zone: str | None = None
    slots: list[dt.datetime] = Field(default_factory=list)

    def to_entity(self) -> DaySlots:
        return DaySlots(
            professional_id=self.professional_id,
            date=self.day,
            time_zone=self.time_zone,
            slots=_unique_instants(self.slots),
        )


class HoldDTO(WireModel):
    id: str
    scheduled_for: dt.datetime
    expires_at: dt.datetime
    location_type: str | None = None
    offering_id: str | None = None
    professional_id: str | None = None

    def to_entity(self, requested_mode: AppointmentMode | None = None) -> Hold:
        mode = AppointmentMode.from_wire(self.location_type) or requested_mode or AppointmentMode.IN_PERSON
        return Hold(
            hold_id=self.id,
            slot_instant=_to_utc(self.scheduled_for),
            appointment_mode=mode,
            expires_at=_to_utc(self.expires_at),
            offering_id=self.offering_id,
            professional_id=self.professional_id,
        )


class WaitlistEntryDTO(WireModel):
    id: str
    professional_id: str
    service_id: str
    preferred_start: dt.datetime | None = None
    preferred_end: dt.datetime | None = None
    status: str = "ACTIVE"

    def to_entity(self) -> WaitlistEntry:
        return WaitlistEntry(
            id=self.id,
            professional_id=self.professional_id,
            service_id=self.service_id,
            preferred_start=_to_utc(self.preferred_start) if self.preferred_start else None,
            preferred_end=_to_utc(self.preferred_end) if self.preferred_end else None,
            status=self.status,
        )


def parse_summary(payload: Any) -> AvailabilitySummary:
    try:
        return AvailabilitySummaryDTO.model_validate(payload).to_entity()
    except ValidationError as e:
        raise BackendContractError("Availability endpoint returned unexpected response.") from e


def parse_day_slots(payload: Any) -> DaySlots:
    try:
        return DaySlotsDTO.model_validate(payload).to_entity()
    except ValidationError as e:
        raise BackendContractError("Couldn't load times.") from e


def parse_hold(
    payload: Any,
    requested_slot: dt.datetime | None = None,
    requested_mode: AppointmentMode | None = None,
) -> Hold:
    """
    Accepts the nested `{"hold": {...}}` shape as well as the flat
    `{"holdId", "holdUntil"}` shape (epoch millis) some endpoints return.
    """
    if not isinstance(payload, dict):
        raise BackendContractError("Hold response missing fields.")
    try:
        if isinstance(payload.get("hold"), dict):
            return HoldDTO.model_validate(payload["hold"]).to_entity(requested_mode)

        hold_until = payload.get("holdUntil")
        if payload.get("holdId") and isinstance(hold_until, (int, float)) and requested_slot is not None:
            expires_at = dt.datetime.fromtimestamp(hold_until / 1000, tz=dt.timezone.utc)
            return HoldDTO(
                id=str(payload["holdId"]),
                scheduled_for=requested_slot,
                expires_at=expires_at,
                location_type=requested_mode.wire_value if requested_mode else None,
            ).to_entity(requested_mode)
    except ValidationError as e:
        raise BackendContractError("Hold response missing fields.") from e

    raise BackendContractError("Hold response missing fields.")


def parse_waitlist_entry(payload: Any) -> WaitlistEntry:
    try:
        entry = payload.get("entry") if isinstance(payload, dict) else None
        return WaitlistEntryDTO.model_validate(entry).to_entity()
    except ValidationError as e:
        raise BackendContractError("Waitlist response missing fields.") from e
