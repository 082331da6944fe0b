from __future__ import annotations

import asyncio
import itertools
import logging
from collections import Counter
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from availability_coordinator.application.exceptions import BackendRequestError, CoordinatorError
from availability_coordinator.application.ports.booking_backend import BookingBackendPort
from availability_coordinator.application.utils.zoned_time import (
    add_days,
    today_in_zone,
    zoned_wall_time_to_instant,
)
from availability_coordinator.domain.entities.availability import (
    AllowedModes,
    AvailabilitySummary,
    DaySlots,
    DaySummary,
    ProfessionalCard,
)
from availability_coordinator.domain.entities.hold import Hold
from availability_coordinator.domain.entities.selection_key import AppointmentMode, SelectionKey
from availability_coordinator.domain.entities.waitlist import WaitlistEntry, WaitlistRequest


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MockBookingBackend(BookingBackendPort):
    """
    In-memory stand-in for the booking service, used for ENV=dev/local and tests.
    Every call is counted in `calls`; hold traffic is also recorded in order in `events`.
    """

    def __init__(
        self,
        time_zone: str = "America/New_York",
        allowed_modes: AllowedModes | None = None,
        secondaries: list[ProfessionalCard] | None = None,
        hold_ttl: timedelta = timedelta(minutes=10),
        now: Callable[[], datetime] | None = None,
        latency: float = 0.0,
        waitlist_supported: bool = True,
    ) -> None:
        self.time_zone = time_zone
        self.allowed_modes = allowed_modes or AllowedModes()
        self.secondaries = list(secondaries or [])
        self.hold_ttl = hold_ttl
        self.latency = latency
        self.waitlist_supported = waitlist_supported
        self._now = now or _utc_now

        self._slots: dict[tuple[str, date], list[datetime]] = {}
        self._holds: dict[str, Hold] = {}
        self._waitlist: dict[str, WaitlistEntry] = {}
        self._hold_ids = itertools.count(1)
        self._waitlist_ids = itertools.count(1)

        self.failing_professionals: set[str] = set()
        self.summary_error: CoordinatorError | None = None
        self.hold_error: CoordinatorError | None = None
        self.delete_error: CoordinatorError | None = None

        self.calls: Counter[str] = Counter()
        self.events: list[tuple[str, str]] = []
        self._logger = logging.getLogger(__name__)

    def add_slots(self, professional_id: str, day: date, *wall_times: str) -> list[datetime]:
        """Register a bookable day; wall times are "HH:MM" in the backend's zone. No times = zero-slot day."""
        instants = [
            zoned_wall_time_to_instant(day.year, day.month, day.day, int(t[:2]), int(t[3:5]), self.time_zone)
            for t in wall_times
        ]
        self._slots.setdefault((professional_id, day), []).extend(instants)
        self._slots[(professional_id, day)].sort()
        return instants

    def seed_demo_week(self, professional_id: str, days: int = 7) -> None:
        start = today_in_zone(self.time_zone, self._now())
        times = [f"{h:02d}:{m:02d}" for h in range(9, 18) for m in (0, 30)]
        for offset in range(days):
            self.add_slots(professional_id, add_days(start, offset), *times)

    def active_holds(self) -> list[Hold]:
        now = self._now()
        return [h for h in self._holds.values() if h.expires_at > now]

    async def _pause(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    def _resolve_mode(self, requested: AppointmentMode) -> AppointmentMode:
        if self.allowed_modes.allows(requested):
            return requested
        return self.allowed_modes.only_mode() or requested

    async def get_availability_summary(self, key: SelectionKey) -> AvailabilitySummary:
        self.calls["summary"] += 1
        await self._pause()
        if self.summary_error is not None:
            raise self.summary_error

        days = [
            DaySummary(date=day, open_slot_count=len(instants))
            for (pro_id, day), instants in self._slots.items()
            if pro_id == key.professional_id
        ]
        return AvailabilitySummary(
            professional_id=key.professional_id,
            service_id=key.service_id,
            mode=self._resolve_mode(key.appointment_mode),
            time_zone=self.time_zone,
            location_id=f"loc_{key.professional_id}",
            allowed_modes=self.allowed_modes,
            days=tuple(sorted(days, key=lambda d: d.date)),
            primary=ProfessionalCard(
                id=key.professional_id,
                business_name="Demo Studio",
                offering_id=f"off_{key.professional_id}",
                location_id=f"loc_{key.professional_id}",
                time_zone=self.time_zone,
                is_primary=True,
            ),
            secondaries=tuple(self.secondaries),
            waitlist_supported=self.waitlist_supported,
            offering_id=f"off_{key.professional_id}",
            media_id=key.context_media_id,
            duration_minutes=60,
            step_minutes=30,
        )

    async def get_day_slots(
        self,
        professional_id: str,
        service_id: str,
        mode: AppointmentMode,
        day: date,
        location_id: str | None = None,
    ) -> DaySlots:
        self.calls["day"] += 1
        self.calls[f"day:{professional_id}"] += 1
        await self._pause()
        if professional_id in self.failing_professionals:
            raise BackendRequestError("Couldn't load times (500).", status_code=500)
        return DaySlots(
            professional_id=professional_id,
            date=day,
            time_zone=self.time_zone,
            slots=tuple(self._slots.get((professional_id, day), [])),
        )

    async def create_hold(
        self,
        offering_id: str,
        slot_instant: datetime,
        mode: AppointmentMode,
        location_id: str | None = None,
    ) -> Hold:
        self.calls["create_hold"] += 1
        self.events.append(("create", slot_instant.isoformat()))
        hold_id = f"mock_hold_{next(self._hold_ids)}"
        await self._pause()
        if self.hold_error is not None:
            raise self.hold_error

        for existing in self.active_holds():
            if existing.slot_instant == slot_instant and existing.offering_id == offering_id:
                raise BackendRequestError("Someone is already holding that time. Try another slot.", 409)

        hold = Hold(
            hold_id=hold_id,
            slot_instant=slot_instant,
            appointment_mode=mode,
            expires_at=self._now() + self.hold_ttl,
            offering_id=offering_id,
        )
        self._holds[hold.hold_id] = hold
        self._logger.info("Mock hold created", extra={"hold_id": hold.hold_id, "mode": mode.value})
        return hold

    async def get_hold(self, hold_id: str) -> Hold | None:
        self.calls["get_hold"] += 1
        await self._pause()
        hold = self._holds.get(hold_id)
        if hold is None:
            return None
        if hold.expires_at <= self._now():
            del self._holds[hold_id]
            return None
        return hold

    async def delete_hold(self, hold_id: str) -> None:
        self.calls["delete_hold"] += 1
        self.events.append(("delete", hold_id))
        await self._pause()
        if self.delete_error is not None:
            raise self.delete_error
        self._holds.pop(hold_id, None)

    async def join_waitlist(self, request: WaitlistRequest) -> WaitlistEntry:
        self.calls["waitlist"] += 1
        entry_id = f"mock_waitlist_{next(self._waitlist_ids)}"
        await self._pause()
        for entry in self._waitlist.values():
            if entry.professional_id == request.professional_id and entry.service_id == request.service_id:
                raise BackendRequestError(
                    "You already have an active waitlist request for this pro/service.", status_code=409
                )

        start = end = None
        if request.desired_for is not None:
            window = timedelta(minutes=request.flexibility_minutes)
            start, end = request.desired_for - window, request.desired_for + window

        entry = WaitlistEntry(
            id=entry_id,
            professional_id=request.professional_id,
            service_id=request.service_id,
            preferred_start=start,
            preferred_end=end,
        )
        self._waitlist[entry.id] = entry
        return entry
