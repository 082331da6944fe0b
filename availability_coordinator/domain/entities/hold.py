from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from availability_coordinator.domain.entities.selection_key import AppointmentMode


@dataclass(frozen=True)
class Hold:
    hold_id: str
    slot_instant: datetime
    appointment_mode: AppointmentMode
    expires_at: datetime  # always server-issued
    offering_id: str | None = None
    professional_id: str | None = None


@dataclass(frozen=True)
class HoldTick:
    remaining: timedelta | None
    is_urgent: bool = False
    is_expired: bool = False
    label: str | None = None  # MM:SS
