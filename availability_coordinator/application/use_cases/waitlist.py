from __future__ import annotations

import logging
from dataclasses import dataclass

from availability_coordinator.application.exceptions import (
    AuthenticationRequiredError,
    CoordinatorError,
    PreconditionError,
)
from availability_coordinator.application.ports.booking_backend import BookingBackendPort
from availability_coordinator.application.utils.zoned_time import datetime_local_to_instant
from availability_coordinator.core.config import settings
from availability_coordinator.domain.entities.waitlist import WaitlistEntry, WaitlistRequest

MIN_FLEX_MINUTES = 15
MAX_FLEX_MINUTES = 24 * 60

JOINED_MESSAGE = "You're on the waitlist. We'll notify you if something opens up."


@dataclass(frozen=True)
class WaitlistResult:
    entry: WaitlistEntry | None
    message: str | None
    error: CoordinatorError | None = None
    login_required: bool = False


def clamp_flexibility(minutes: object, default: int | None = None) -> int:
    fallback = settings.WAITLIST_DEFAULT_FLEX_MINUTES if default is None else default
    try:
        value = int(minutes)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
    return max(MIN_FLEX_MINUTES, min(MAX_FLEX_MINUTES, value))


class JoinWaitlistUseCase:
    def __init__(self, backend: BookingBackendPort) -> None:
        self._backend = backend
        self._logger = logging.getLogger(__name__)

    async def join(
        self,
        professional_id: str,
        service_id: str | None,
        appointment_zone: str,
        desired_local: str | None = None,
        flexibility_minutes: object = None,
        notes: str | None = None,
        media_id: str | None = None,
    ) -> WaitlistResult:
        """
        `desired_local` is what the viewer typed ("YYYY-MM-DDTHH:MM") and is read
        as wall time in the appointment zone, not the viewer's zone.
        """
        try:
            if not service_id:
                raise PreconditionError("This look is missing a service link, so waitlist can't be created yet.")

            desired_for = None
            if desired_local:
                desired_for = datetime_local_to_instant(desired_local, appointment_zone)
                if desired_for is None:
                    raise PreconditionError("Pick a valid preferred date and time.")

            request = WaitlistRequest(
                professional_id=professional_id,
                service_id=service_id,
                desired_for=desired_for,
                flexibility_minutes=clamp_flexibility(flexibility_minutes),
                notes=(notes or "").strip() or None,
                media_id=media_id,
            )
            entry = await self._backend.join_waitlist(request)
        except AuthenticationRequiredError as e:
            return WaitlistResult(entry=None, message=None, error=e, login_required=True)
        except CoordinatorError as e:
            self._logger.info(
                "Waitlist join failed",
                extra={"professional_id": professional_id, "error": e.message},
            )
            return WaitlistResult(entry=None, message=e.message, error=e)

        self._logger.info("Joined waitlist", extra={"professional_id": professional_id})
        return WaitlistResult(entry=entry, message=JOINED_MESSAGE)
