from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from availability_coordinator.application.exceptions import CoordinatorError
from availability_coordinator.application.ports.booking_backend import BookingBackendPort
from availability_coordinator.application.utils.zoned_time import format_countdown
from availability_coordinator.core.config import settings
from availability_coordinator.domain.entities.hold import Hold, HoldTick
from availability_coordinator.domain.entities.selection_key import AppointmentMode

HOLD_EXPIRED_MESSAGE = "That hold expired. Pick another time."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HoldManager:
    """
    Owns the single live hold of a booking session.

    status: "none", "pending", "live", "expired", "superseded", "cancelled", "handed_off"
    """

    def __init__(
        self,
        backend: BookingBackendPort,
        now: Callable[[], datetime] | None = None,
        tick_interval: float | None = None,
        urgent_threshold: timedelta | None = None,
        on_expired: Callable[[Hold | None], None] | None = None,
    ) -> None:
        self._backend = backend
        self._now = now or _utc_now
        self._tick_interval = settings.HOLD_TICK_INTERVAL_SECONDS if tick_interval is None else tick_interval
        self._urgent_threshold = urgent_threshold or timedelta(seconds=settings.HOLD_URGENT_THRESHOLD_SECONDS)
        self.on_expired = on_expired

        self._hold: Hold | None = None
        self._status = "none"
        self._generation = 0
        self._timer: asyncio.Task[None] | None = None
        self._pending_deletes: set[asyncio.Task[None]] = set()
        self._logger = logging.getLogger(__name__)

    @property
    def hold(self) -> Hold | None:
        return self._hold

    @property
    def status(self) -> str:
        return self._status

    @property
    def timer_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def create_hold(
        self,
        offering_id: str,
        slot_instant: datetime,
        mode: AppointmentMode,
        location_id: str | None = None,
    ) -> Hold | None:
        """
        Hold `slot_instant`. Any previously known hold is released first (delete
        issued, not awaited). Returns None when the selection moved on while the
        request was pending; the orphaned server hold is deleted in that case.
        """
        if self._hold is not None:
            self._release(self._hold, "superseded")

        self._generation += 1
        generation = self._generation
        self._status = "pending"

        if self._pending_deletes:
            # Let queued deletes reach the backend before the create goes out.
            await asyncio.sleep(0)

        try:
            hold = await self._backend.create_hold(offering_id, slot_instant, mode, location_id)
        except CoordinatorError:
            if generation == self._generation:
                self._status = "none"
            raise

        if generation != self._generation:
            self._logger.info("Hold superseded while pending", extra={"hold_id": hold.hold_id})
            self.delete_hold(hold.hold_id)
            return None

        self._adopt(hold)
        return hold

    def _adopt(self, hold: Hold) -> None:
        self._hold = hold
        self._status = "live"
        if hold.expires_at <= self._now():
            self._expire()
            return
        self._start_timer()
        self._logger.info(
            "Hold live",
            extra={"hold_id": hold.hold_id, "mode": hold.appointment_mode.value},
        )

    def tick(self, now: datetime | None = None) -> HoldTick:
        if self._hold is None:
            if self._status == "expired":
                return HoldTick(remaining=timedelta(0), is_expired=True, label="00:00")
            return HoldTick(remaining=None)

        remaining = self._hold.expires_at - (now or self._now())
        if remaining <= timedelta(0):
            self._expire()
            return HoldTick(remaining=timedelta(0), is_expired=True, label="00:00")

        return HoldTick(
            remaining=remaining,
            is_urgent=remaining <= self._urgent_threshold,
            label=format_countdown(remaining),
        )

    def _expire(self) -> None:
        hold = self._hold
        self._hold = None
        self._status = "expired"
        self._stop_timer()
        self._logger.info("Hold expired", extra={"hold_id": hold.hold_id if hold else None})
        if self.on_expired is not None:
            self.on_expired(hold)

    def delete_hold(self, hold_id: str | None) -> asyncio.Task[None] | None:
        """Fire-and-forget release. Failures are logged; the server TTL reaps orphans."""
        if not hold_id:
            return None
        task = asyncio.get_running_loop().create_task(self._delete_quietly(hold_id))
        self._pending_deletes.add(task)
        task.add_done_callback(self._pending_deletes.discard)
        return task

    async def _delete_quietly(self, hold_id: str) -> None:
        try:
            await self._backend.delete_hold(hold_id)
        except CoordinatorError as e:
            self._logger.info("Hold delete failed", extra={"hold_id": hold_id, "error": e.message})

    def _release(self, hold: Hold, status: str) -> None:
        self._hold = None
        self._status = status
        self._stop_timer()
        self.delete_hold(hold.hold_id)

    def invalidate(self, reason: str = "cancelled") -> None:
        """
        Drop the current hold (and any pending create) ahead of a selection change.
        Pick, day change and mode change all come through here.
        """
        self._generation += 1
        if self._hold is not None:
            self._logger.info("Hold invalidated", extra={"hold_id": self._hold.hold_id, "reason": reason})
            self._release(self._hold, reason)
        elif self._status == "pending":
            self._status = "none"

    def handle_hold_rejected(self) -> None:
        """A dependent request rejected the hold; recover exactly as for local expiry."""
        self._generation += 1
        hold = self._hold
        self._expire()
        if hold is not None:
            self.delete_hold(hold.hold_id)

    async def hydrate_from_server(self, hold_id: str) -> Hold | None:
        """
        Rebuild hold state from the server, e.g. for a restored session.
        Server values win; a missing hold clears everything locally. A different
        hold we were tracking is released.
        """
        self._generation += 1
        generation = self._generation
        hold = await self._backend.get_hold(hold_id)
        if generation != self._generation:
            return None

        previous = self._hold
        if previous is not None and previous.hold_id != hold_id:
            # Only one hold per session: the one we were tracking goes.
            self._release(previous, "superseded")

        if hold is None:
            self._hold = None
            self._status = "none"
            self._stop_timer()
            self._logger.info("Hold missing on hydrate", extra={"hold_id": hold_id})
            return None

        self._adopt(hold)
        return self._hold

    def detach(self) -> Hold | None:
        """Hand the live hold to checkout: stop counting down locally without releasing it."""
        hold = self._hold
        self._hold = None
        self._status = "handed_off" if hold else self._status
        self._stop_timer()
        return hold

    def _start_timer(self) -> None:
        self._stop_timer()
        self._timer = asyncio.get_running_loop().create_task(self._run_timer())

    async def _run_timer(self) -> None:
        while self._hold is not None:
            await asyncio.sleep(self._tick_interval)
            self.tick()

    def _stop_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is None or timer.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if timer is not current:
            timer.cancel()

    async def drain(self) -> None:
        """Wait for outstanding deletes; used on session close and in tests."""
        if self._pending_deletes:
            await asyncio.gather(*list(self._pending_deletes), return_exceptions=True)

    async def close(self) -> None:
        self.invalidate("cancelled")
        await self.drain()
