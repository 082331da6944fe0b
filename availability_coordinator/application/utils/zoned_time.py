from __future__ import annotations

import os
import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from availability_coordinator.core.config import settings

NEUTRAL_TIMEZONE = "UTC"

_DATETIME_LOCAL = re.compile(r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2})$")


def is_valid_time_zone(name: object) -> bool:
    if not isinstance(name, str) or not name.strip():
        return False
    try:
        ZoneInfo(name.strip())
    except Exception:
        return False
    return True


def sanitize_time_zone(name: object, fallback: str = NEUTRAL_TIMEZONE) -> str:
    """Return `name` trimmed if it is a known IANA zone, otherwise `fallback`."""
    if is_valid_time_zone(name):
        return str(name).strip()
    return fallback


def resolve_appointment_zone(
    server_zone: object = None,
    professional_zone: object = None,
    viewer_zone: object = None,
    fallback: str = NEUTRAL_TIMEZONE,
) -> str:
    """
    Zone in which a slot's wall-clock meaning is authoritative.
    First valid wins: server-declared, professional, viewer, neutral default.
    """
    for candidate in (server_zone, professional_zone, viewer_zone):
        if is_valid_time_zone(candidate):
            return str(candidate).strip()
    return fallback


def detect_viewer_time_zone(fallback: str = NEUTRAL_TIMEZONE) -> str:
    return sanitize_time_zone(settings.VIEWER_TIMEZONE or os.environ.get("TZ"), fallback)


def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(sanitize_time_zone(name))


def _ensure_aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def _offset(instant: datetime, tz: ZoneInfo) -> timedelta:
    return instant.astimezone(tz).utcoffset() or timedelta(0)


def zoned_wall_time_to_instant(
    year: int,
    month: int,
    day: int,
    hour: int,
    minute: int,
    zone: str,
) -> datetime:
    """
    Convert wall-clock time in `zone` to an aware UTC instant.

    The wall time is first read as if it were UTC, then corrected by the zone's
    offset at that guess. If the corrected instant lands on the other side of a
    DST boundary the offset delta is applied once more; a wall-clock value can
    straddle at most one transition, so two passes are enough.
    """
    tz = _zone(zone)
    guess = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)

    first = _offset(guess, tz)
    guess = guess - first

    second = _offset(guess, tz)
    if second != first:
        guess = guess - (second - first)

    return guess


def instant_to_calendar_day(instant: datetime, zone: str) -> date:
    return _ensure_aware(instant).astimezone(_zone(zone)).date()


def hour_of_day_in_zone(instant: datetime, zone: str) -> int:
    return _ensure_aware(instant).astimezone(_zone(zone)).hour


def today_in_zone(zone: str, now: datetime | None = None) -> date:
    current = _ensure_aware(now) if now is not None else datetime.now(timezone.utc)
    return instant_to_calendar_day(current, zone)


def add_days(day: date, days: int) -> date:
    # Noon anchor keeps date rolling clear of midnight-adjacent DST edges.
    anchor = datetime.combine(day, time(12, 0), tzinfo=timezone.utc)
    return (anchor + timedelta(days=days)).date()


def _clock(local: datetime) -> str:
    hour12 = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{hour12}:{local.minute:02d} {suffix}"


def instant_to_display_string(instant: datetime, zone: str, style: str = "short") -> str:
    """
    Format an instant in `zone`.

    short:  "Sun 10:00 AM" (slot chips)
    medium: "Sun, Mar 10, 10:00 AM" (local-time hints)
    full:   "Sunday, March 10, 2024, 10:00 AM" (confirmations)
    """
    local = _ensure_aware(instant).astimezone(_zone(zone))
    if style == "short":
        return f"{local:%a} {_clock(local)}"
    if style == "medium":
        return f"{local:%a}, {local:%b} {local.day}, {_clock(local)}"
    if style == "full":
        return f"{local:%A}, {local:%B} {local.day}, {local.year}, {_clock(local)}"
    raise ValueError(f"Unknown display style: {style}")


def day_labels(day: date, zone: str) -> tuple[str, str]:
    """Weekday and two-digit day-of-month for a day scroller entry."""
    anchor = zoned_wall_time_to_instant(day.year, day.month, day.day, 12, 0, zone)
    local = anchor.astimezone(_zone(zone))
    return f"{local:%a}", f"{local.day:02d}"


def parse_datetime_local(value: str) -> tuple[int, int, int, int, int] | None:
    match = _DATETIME_LOCAL.match((value or "").strip())
    if not match:
        return None
    year, month, day, hour, minute = (int(part) for part in match.groups())
    return year, month, day, hour, minute


def datetime_local_to_instant(value: str, zone: str) -> datetime | None:
    """Interpret a form-entered "YYYY-MM-DDTHH:MM" as wall time in `zone`."""
    parts = parse_datetime_local(value)
    if parts is None:
        return None
    try:
        return zoned_wall_time_to_instant(*parts, zone=zone)
    except ValueError:
        return None


def instant_to_iso(instant: datetime) -> str:
    utc = _ensure_aware(instant).astimezone(timezone.utc)
    return utc.isoformat().replace("+00:00", "Z")


def format_countdown(remaining: timedelta) -> str:
    seconds = max(0, int(remaining.total_seconds()))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"
