from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class AppointmentMode(str, Enum):
    IN_PERSON = "IN_PERSON"
    MOBILE = "MOBILE"

    @property
    def wire_value(self) -> str:
        # The booking backend still calls in-person appointments "SALON".
        return "SALON" if self is AppointmentMode.IN_PERSON else "MOBILE"

    @classmethod
    def from_wire(cls, value: object) -> AppointmentMode | None:
        raw = value.strip().upper() if isinstance(value, str) else ""
        if raw in ("SALON", "IN_PERSON"):
            return cls.IN_PERSON
        if raw == "MOBILE":
            return cls.MOBILE
        return None


@dataclass(frozen=True)
class SelectionKey:
    professional_id: str
    service_id: str
    appointment_mode: AppointmentMode
    context_media_id: str | None = None
    viewer_location_bias: tuple[float, float] | None = None  # (lat, lng)

    def cache_key(self, bias_decimals: int = 4) -> str:
        """
        Stable cache identity for this view.
        The viewer bias is quantized so GPS jitter does not churn entries.
        """
        bias = ""
        if self.viewer_location_bias is not None:
            lat, lng = self.viewer_location_bias
            bias = f"{lat:.{bias_decimals}f},{lng:.{bias_decimals}f}"
        return (
            f"pro={self.professional_id}|service={self.service_id}"
            f"|loc={self.appointment_mode.value}|media={self.context_media_id or ''}|bias={bias}"
        )

    def with_mode(self, mode: AppointmentMode) -> SelectionKey:
        return replace(self, appointment_mode=mode)
