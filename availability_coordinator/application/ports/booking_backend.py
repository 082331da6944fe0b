from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime

from availability_coordinator.domain.entities.availability import AvailabilitySummary, DaySlots
from availability_coordinator.domain.entities.hold import Hold
from availability_coordinator.domain.entities.selection_key import AppointmentMode, SelectionKey
from availability_coordinator.domain.entities.waitlist import WaitlistEntry, WaitlistRequest


class BookingBackendPort(ABC):
    """
    Server endpoints the coordinator consumes.
    Implementations raise CoordinatorError subclasses on failure.
    """

    @abstractmethod
    async def get_availability_summary(self, key: SelectionKey) -> AvailabilitySummary:
        """Resolved zone, allowed modes, bookable days and professionals for a key."""
        raise NotImplementedError

    @abstractmethod
    async def get_day_slots(
        self,
        professional_id: str,
        service_id: str,
        mode: AppointmentMode,
        day: date,
        location_id: str | None = None,
    ) -> DaySlots:
        """Open slot instants for one professional on one day."""
        raise NotImplementedError

    @abstractmethod
    async def create_hold(
        self,
        offering_id: str,
        slot_instant: datetime,
        mode: AppointmentMode,
        location_id: str | None = None,
    ) -> Hold:
        """Create an exclusive hold. expires_at comes from the server."""
        raise NotImplementedError

    @abstractmethod
    async def get_hold(self, hold_id: str) -> Hold | None:
        """Return the hold, or None when it is missing or expired."""
        raise NotImplementedError

    @abstractmethod
    async def delete_hold(self, hold_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def join_waitlist(self, request: WaitlistRequest) -> WaitlistEntry:
        raise NotImplementedError
