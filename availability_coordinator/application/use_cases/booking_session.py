from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone

from availability_coordinator.application.exceptions import (
    AuthenticationRequiredError,
    CoordinatorError,
    HoldInvalidError,
    PreconditionError,
)
from availability_coordinator.application.ports.booking_backend import BookingBackendPort
from availability_coordinator.application.use_cases.availability_cache import (
    AvailabilityCache,
    DayFanOut,
    FetchResult,
)
from availability_coordinator.application.use_cases.hold_lifecycle import HOLD_EXPIRED_MESSAGE, HoldManager
from availability_coordinator.application.use_cases.selection import SelectionStateMachine, slots_in_bucket
from availability_coordinator.application.use_cases.waitlist import JoinWaitlistUseCase, WaitlistResult
from availability_coordinator.application.utils.zoned_time import (
    day_labels,
    detect_viewer_time_zone,
    instant_to_calendar_day,
    instant_to_display_string,
    resolve_appointment_zone,
    sanitize_time_zone,
)
from availability_coordinator.core.config import settings
from availability_coordinator.domain.entities.availability import AvailabilitySummary
from availability_coordinator.domain.entities.hold import Hold, HoldTick
from availability_coordinator.domain.entities.selection_key import AppointmentMode, SelectionKey
from availability_coordinator.domain.entities.selection_state import SelectedSlot, SelectionState, TimeBucket

MISSING_PROFESSIONAL_MESSAGE = "Missing professional. Please try again."
MISSING_SERVICE_MESSAGE = "No service is linked yet. Ask the pro to attach a service to this look."
MISSING_LOCATION_MESSAGE = "Missing booking location for that pro. Please try again."
MISSING_OFFERING_MESSAGE = "This service can't be booked with that pro yet."
NOT_LOADED_MESSAGE = "Availability is still loading."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DrawerContext:
    professional_id: str
    service_id: str | None = None
    media_id: str | None = None
    offering_id: str | None = None
    source: str | None = None  # "REQUESTED", "DISCOVERY", "AFTERCARE"
    viewer_location_bias: tuple[float, float] | None = None

    def booking_source(self) -> str:
        if self.source:
            return self.source
        return "DISCOVERY" if self.media_id else "REQUESTED"


@dataclass(frozen=True)
class PickResult:
    hold: Hold | None
    message: str | None = None
    error: CoordinatorError | None = None
    login_required: bool = False


@dataclass(frozen=True)
class CheckoutHandoff:
    hold_id: str
    offering_id: str
    mode: AppointmentMode
    source: str
    media_id: str | None = None

    def query_params(self) -> dict[str, str]:
        params = {
            "holdId": self.hold_id,
            "offeringId": self.offering_id,
            "locationType": self.mode.wire_value,
            "source": self.source,
        }
        if self.media_id:
            params["mediaId"] = self.media_id
        return params


@dataclass(frozen=True)
class SessionView:
    state: SelectionState
    appointment_zone: str
    viewer_zone: str
    loading: bool = False
    error: str | None = None
    login_required: str | None = None  # purpose that needs a login redirect
    summary: AvailabilitySummary | None = None
    primary_slots: tuple[datetime, ...] = ()
    secondary_slots: dict[str, tuple[datetime, ...]] = field(default_factory=dict)
    hold: Hold | None = None
    countdown: HoldTick = field(default_factory=lambda: HoldTick(remaining=None))
    can_waitlist: bool = False

    @property
    def can_continue(self) -> bool:
        return self.hold is not None and self.state.selected_slot is not None and not self.countdown.is_expired

    @property
    def show_local_hint(self) -> bool:
        return self.viewer_zone != self.appointment_zone

    def visible_slots(self) -> list[datetime]:
        return slots_in_bucket(self.primary_slots, self.state.time_bucket, self.appointment_zone)

    def slot_label(self, instant: datetime) -> str:
        return instant_to_display_string(instant, self.appointment_zone, "short")

    def day_scroller(self) -> list[tuple[date, str, str]]:
        if self.summary is None:
            return []
        return [(d.date, *day_labels(d.date, self.appointment_zone)) for d in self.summary.days]

    @property
    def selected_line(self) -> str | None:
        slot = self.state.selected_slot
        if slot is None:
            return None
        return instant_to_display_string(slot.slot_instant, self.appointment_zone, "full")

    @property
    def local_time_line(self) -> str | None:
        slot = self.state.selected_slot
        if slot is None or not self.show_local_hint:
            return None
        return instant_to_display_string(slot.slot_instant, self.viewer_zone, "medium")


class BookingSession:
    """
    One availability drawer "open": built when the drawer opens and thrown away
    on close. Wires the selection machine, the availability cache and the hold
    manager together and exposes a single message line plus a login signal.
    """

    def __init__(
        self,
        context: DrawerContext,
        backend: BookingBackendPort,
        cache: AvailabilityCache | None = None,
        viewer_zone: str | None = None,
        now: Callable[[], datetime] | None = None,
        tick_interval: float | None = None,
        initial_mode: AppointmentMode = AppointmentMode.IN_PERSON,
    ) -> None:
        self.context = context
        self._backend = backend
        self._cache = cache or AvailabilityCache(backend)
        self._now = now or _utc_now
        self._fallback_zone = sanitize_time_zone(settings.FALLBACK_TIMEZONE)
        self._viewer_zone = sanitize_time_zone(
            viewer_zone or detect_viewer_time_zone(self._fallback_zone), self._fallback_zone
        )

        self._holds = HoldManager(backend, now=self._now, tick_interval=tick_interval, on_expired=self._on_hold_expired)
        self._machine = SelectionStateMachine(initial_mode, invalidate_hold=self._holds.invalidate)
        self._waitlist = JoinWaitlistUseCase(backend)

        self._summary: AvailabilitySummary | None = None
        self._fan_out: DayFanOut | None = None
        self._error: str | None = None
        self._day_error: str | None = None  # message left by the last failed day load
        self._login_required: str | None = None
        self._loading = False
        self._closed = False
        self._tokens: dict[str, int] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._logger = logging.getLogger(__name__)

    @property
    def state(self) -> SelectionState:
        return self._machine.state

    @property
    def hold_manager(self) -> HoldManager:
        return self._holds

    @property
    def summary(self) -> AvailabilitySummary | None:
        return self._summary

    @property
    def appointment_zone(self) -> str:
        summary = self._summary
        return resolve_appointment_zone(
            summary.time_zone if summary else None,
            summary.primary.time_zone if summary else None,
            self._viewer_zone,
            fallback=self._fallback_zone,
        )

    @property
    def effective_service_id(self) -> str | None:
        if self._summary is not None:
            return self._summary.service_id
        return (self.context.service_id or "").strip() or None

    @property
    def can_waitlist(self) -> bool:
        return bool(
            self._summary is not None
            and self._summary.waitlist_supported
            and self.context.professional_id
            and self.effective_service_id
        )

    def _selection_key(self) -> SelectionKey:
        return SelectionKey(
            professional_id=self.context.professional_id.strip(),
            service_id=(self.context.service_id or "").strip(),
            appointment_mode=self._machine.state.mode,
            context_media_id=self.context.media_id,
            viewer_location_bias=self.context.viewer_location_bias,
        )

    def _begin(self, purpose: str) -> int:
        token = self._tokens.get(purpose, 0) + 1
        self._tokens[purpose] = token
        return token

    def _is_current(self, purpose: str, token: int) -> bool:
        return not self._closed and self._tokens.get(purpose) == token

    def _absorb_error(self, error: CoordinatorError | None, purpose: str) -> None:
        if error is None:
            return
        if isinstance(error, AuthenticationRequiredError):
            self._login_required = purpose
            return
        self._error = error.message

    def _on_hold_expired(self, hold: Hold | None) -> None:
        self._machine.clear_slot()
        self._error = HOLD_EXPIRED_MESSAGE

    def view(self) -> SessionView:
        # Tick first: an expiry observed here clears the slot before the snapshot.
        countdown = self._holds.tick()
        fan_out = self._fan_out
        return SessionView(
            state=self._machine.state,
            appointment_zone=self.appointment_zone,
            viewer_zone=self._viewer_zone,
            loading=self._loading,
            error=self._error,
            login_required=self._login_required,
            summary=self._summary,
            primary_slots=fan_out.primary_slots if fan_out else (),
            secondary_slots=dict(fan_out.secondary_slots) if fan_out else {},
            hold=self._holds.hold,
            countdown=countdown,
            can_waitlist=self.can_waitlist,
        )

    async def open(self) -> SessionView:
        if not self.context.professional_id.strip():
            self._error = MISSING_PROFESSIONAL_MESSAGE
            return self.view()
        if not (self.context.service_id or "").strip():
            self._error = MISSING_SERVICE_MESSAGE
            return self.view()

        await self._load_summary()
        return self.view()

    async def refresh(self) -> SessionView:
        await self._load_summary(force_refresh=True)
        return self.view()

    async def _load_summary(self, force_refresh: bool = False, allow_refetch: bool = True) -> bool:
        token = self._begin("summary")
        self._loading = True
        self._error = None
        try:
            result = await self._cache.get_day_summaries(self._selection_key(), force_refresh=force_refresh)
        finally:
            if self._is_current("summary", token):
                self._loading = False

        if not self._is_current("summary", token):
            return False

        self._absorb_error(result.error, "availability")
        if result.revalidating is not None:
            self._watch_revalidation(result.revalidating, token)
        if result.payload is None:
            return False

        await self._apply_summary(result.payload, allow_refetch)
        return True

    def _watch_revalidation(self, pending: asyncio.Future[FetchResult[AvailabilitySummary]], token: int) -> None:
        async def follow() -> None:
            result = await asyncio.shield(pending)
            if not self._is_current("summary", token):
                return
            self._absorb_error(result.error, "availability")
            if result.error is None and result.payload is not None:
                await self._apply_summary(result.payload, allow_refetch=False)

        task = asyncio.get_running_loop().create_task(follow())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _apply_summary(self, summary: AvailabilitySummary, allow_refetch: bool = True) -> None:
        self._summary = summary
        transition = self._machine.apply_summary(summary, self.appointment_zone, self._now())
        if transition.refetch_summary and allow_refetch:
            await self._load_summary(allow_refetch=False)
            return
        await self._load_day()

    async def _load_day(self) -> None:
        summary = self._summary
        day = self._machine.state.selected_day
        if summary is None or day is None:
            return

        token = self._begin("day")
        if self._fan_out is not None and self._fan_out.day != day:
            self._fan_out = None

        fan_out = await self._cache.fetch_day(self._selection_key(), summary, day)
        if not self._is_current("day", token):
            return

        self._fan_out = fan_out
        if fan_out.error is not None:
            self._absorb_error(fan_out.error, "availability")
            self._day_error = fan_out.error.message
        elif self._day_error is not None:
            if self._error == self._day_error:
                self._error = None
            self._day_error = None
        self._machine.apply_day_slots(fan_out.primary_slots, self.appointment_zone)

    async def select_mode(self, mode: AppointmentMode) -> SessionView:
        pre_image = self._machine.state
        transition = self._machine.select_mode(mode)
        if transition.rejected or not transition.changed:
            return self.view()

        self._fan_out = None
        loaded = await self._load_summary()
        if not loaded and self._summary is not None and self._summary.mode != mode:
            # Tentative switch failed: put the previous selection back, minus the released hold.
            self._machine.restore(replace(pre_image, selected_slot=None))
            await self._load_day()
        return self.view()

    async def select_day(self, day: date) -> SessionView:
        transition = self._machine.select_day(day)
        if transition.refetch_day:
            await self._load_day()
        return self.view()

    def select_bucket(self, bucket: TimeBucket) -> SessionView:
        self._machine.select_bucket(bucket)
        return self.view()

    async def pick_slot(
        self,
        professional_id: str,
        slot_instant: datetime,
        offering_id: str | None = None,
    ) -> PickResult:
        try:
            offering, location_id = self._booking_target(professional_id, offering_id)
        except PreconditionError as e:
            self._error = e.message
            return PickResult(hold=None, message=e.message, error=e)

        self._error = None
        self._machine.pick_slot()

        try:
            hold = await self._holds.create_hold(offering, slot_instant, self._machine.state.mode, location_id)
        except AuthenticationRequiredError as e:
            self._login_required = "hold"
            return PickResult(hold=None, error=e, login_required=True)
        except CoordinatorError as e:
            self._error = e.message
            return PickResult(hold=None, message=e.message, error=e)

        if hold is None:
            return PickResult(hold=None)

        transition = self._machine.confirm_slot(
            SelectedSlot(professional_id=professional_id, offering_id=offering, slot_instant=hold.slot_instant),
            hold_mode=hold.appointment_mode,
        )
        if transition.refetch_summary:
            await self._load_summary()
        return PickResult(hold=hold)

    def _booking_target(self, professional_id: str, offering_id: str | None) -> tuple[str, str]:
        summary = self._summary
        if summary is None:
            raise PreconditionError(NOT_LOADED_MESSAGE)

        card = summary.professional(professional_id)
        if card is None:
            raise PreconditionError(MISSING_LOCATION_MESSAGE)

        offering = offering_id or card.offering_id
        if not offering and card.is_primary:
            offering = summary.offering_id or self.context.offering_id
        if not offering:
            raise PreconditionError(MISSING_OFFERING_MESSAGE)

        location_id = summary.location_id if card.is_primary else card.location_id
        if not location_id:
            raise PreconditionError(MISSING_LOCATION_MESSAGE)
        return offering, location_id

    async def restore_hold(self, hold_id: str) -> Hold | None:
        """Re-attach a hold id from a non-authoritative source (e.g. a restored URL)."""
        try:
            hold = await self._holds.hydrate_from_server(hold_id)
        except AuthenticationRequiredError:
            self._login_required = "hold"
            return None
        except CoordinatorError as e:
            self._error = e.message
            return None

        if hold is None:
            self._machine.clear_slot()
            return None

        slot = SelectedSlot(
            professional_id=hold.professional_id or self.context.professional_id,
            offering_id=hold.offering_id or self.context.offering_id or "",
            slot_instant=hold.slot_instant,
        )
        day = instant_to_calendar_day(hold.slot_instant, self.appointment_zone)
        transition = self._machine.adopt_hold(slot, hold.appointment_mode, day)
        if transition.refetch_summary:
            await self._load_summary()
        elif transition.refetch_day:
            await self._load_day()
        return hold

    def handle_booking_rejected(self) -> HoldInvalidError:
        """Booking creation said the hold is gone or mismatched."""
        self._holds.handle_hold_rejected()
        error = HoldInvalidError()
        self._error = error.message
        return error

    def continue_to_checkout(self) -> CheckoutHandoff | None:
        slot = self._machine.state.selected_slot
        hold = self._holds.hold
        if slot is None or hold is None or self._holds.tick().is_expired:
            return None

        self._holds.detach()
        return CheckoutHandoff(
            hold_id=hold.hold_id,
            offering_id=slot.offering_id,
            mode=hold.appointment_mode,
            source=self.context.booking_source(),
            media_id=self.context.media_id,
        )

    async def join_waitlist(
        self,
        desired_local: str | None = None,
        flexibility_minutes: object = None,
        notes: str | None = None,
    ) -> WaitlistResult:
        if not self.can_waitlist:
            error = PreconditionError("Waitlist isn't available for this service.")
            return WaitlistResult(entry=None, message=error.message, error=error)

        result = await self._waitlist.join(
            professional_id=self.context.professional_id,
            service_id=self.effective_service_id,
            appointment_zone=self.appointment_zone,
            desired_local=desired_local,
            flexibility_minutes=flexibility_minutes,
            notes=notes,
            media_id=self.context.media_id,
        )
        if result.login_required:
            self._login_required = "waitlist"
        return result

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in list(self._background):
            task.cancel()
        self._machine.reset()
        await self._holds.drain()
        self._logger.info("Booking session closed", extra={"professional_id": self.context.professional_id})
