from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class WaitlistRequest:
    professional_id: str
    service_id: str
    desired_for: datetime | None = None
    flexibility_minutes: int = 60
    notes: str | None = None
    media_id: str | None = None


@dataclass(frozen=True)
class WaitlistEntry:
    id: str
    professional_id: str
    service_id: str
    preferred_start: datetime | None = None
    preferred_end: datetime | None = None
    status: str = "ACTIVE"
