"""
Tests for the selection state machine: mode rules, default day, bucket correction.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from availability_coordinator.application.use_cases.selection import (
    SelectionStateMachine,
    bucket_counts,
    slots_in_bucket,
)
from availability_coordinator.domain.entities.availability import (
    AllowedModes,
    AvailabilitySummary,
    DaySummary,
    ProfessionalCard,
)
from availability_coordinator.domain.entities.selection_key import AppointmentMode
from availability_coordinator.domain.entities.selection_state import SelectedSlot, TimeBucket

ZONE = "America/New_York"
D1 = date(2024, 5, 6)
D2 = date(2024, 5, 7)
D3 = date(2024, 5, 8)


def _summary(days=(D1, D2), mode=AppointmentMode.IN_PERSON, allowed=None) -> AvailabilitySummary:
    return AvailabilitySummary(
        professional_id="pro_p",
        service_id="svc_s",
        mode=mode,
        time_zone=ZONE,
        location_id="loc_p",
        allowed_modes=allowed or AllowedModes(),
        days=tuple(DaySummary(date=d, open_slot_count=1) for d in days),
        primary=ProfessionalCard(id="pro_p", offering_id="off_p", location_id="loc_p", is_primary=True),
    )


def _at(hour: int, day: date = D1) -> datetime:
    # New York is UTC-4 in May
    return datetime(day.year, day.month, day.day, hour + 4, 0, tzinfo=timezone.utc)


def _machine():
    reasons: list[str] = []
    return SelectionStateMachine(invalidate_hold=reasons.append), reasons


def test_first_summary_picks_first_day():
    """The default day is the server's first listed day."""
    machine, reasons = _machine()

    transition = machine.apply_summary(_summary(), ZONE)

    assert machine.state.selected_day == D1
    assert transition.refetch_day
    assert not transition.refetch_summary
    assert reasons == ["day_change"]


def test_empty_day_list_defaults_to_today_in_zone():
    """With no server days the selection falls back to today in the appointment zone."""
    machine, _ = _machine()
    now = datetime(2024, 5, 7, 2, 0, tzinfo=timezone.utc)  # still May 6 in New York

    machine.apply_summary(_summary(days=()), ZONE, now)

    assert machine.state.selected_day == D1


def test_refreshed_list_without_selected_day_snaps_to_default():
    """A selected day that vanished from a refreshed list snaps back to the first day."""
    machine, reasons = _machine()
    machine.apply_summary(_summary(), ZONE)
    machine.select_day(D2)
    reasons.clear()

    machine.apply_summary(_summary(days=(D1, D3)), ZONE)

    assert machine.state.selected_day == D1
    assert reasons == ["day_change"]


def test_same_summary_twice_is_a_no_op():
    """Applying identical facts again changes nothing and invalidates nothing."""
    machine, reasons = _machine()
    machine.apply_summary(_summary(), ZONE)
    reasons.clear()

    transition = machine.apply_summary(_summary(), ZONE)

    assert not transition.changed
    assert reasons == []


def test_single_mode_service_locks_mode():
    """A mobile-only service forces MOBILE and rejects a user switch."""
    machine, _ = _machine()
    summary = _summary(mode=AppointmentMode.MOBILE, allowed=AllowedModes(in_person=False, mobile=True))

    machine.apply_summary(summary, ZONE)
    transition = machine.select_mode(AppointmentMode.IN_PERSON)

    assert machine.state.mode is AppointmentMode.MOBILE
    assert machine.state.mode_locked
    assert transition.rejected == "mode_not_offered"


def test_server_dropping_current_mode_switches_and_clears():
    """When the echoed summary no longer allows our mode we take the remaining one."""
    machine, reasons = _machine()
    machine.apply_summary(_summary(), ZONE)
    machine.confirm_slot(SelectedSlot("pro_p", "off_p", _at(14)))
    reasons.clear()

    summary = _summary(mode=AppointmentMode.MOBILE, allowed=AllowedModes(in_person=False, mobile=True))
    transition = machine.apply_summary(summary, ZONE)

    assert machine.state.mode is AppointmentMode.MOBILE
    assert machine.state.selected_slot is None
    assert transition.invalidated_hold
    assert reasons == ["mode_change"]


def test_user_mode_switch_requests_new_summary():
    """An allowed mode switch clears day and slot and asks for a new summary."""
    machine, reasons = _machine()
    machine.apply_summary(_summary(), ZONE)
    reasons.clear()

    transition = machine.select_mode(AppointmentMode.MOBILE)

    assert transition.refetch_summary
    assert machine.state.selected_day is None
    assert reasons == ["mode_change"]


def test_empty_bucket_corrects_in_fixed_order():
    """An empty afternoon moves to morning before evening, without marking it explicit."""
    machine, _ = _machine()
    machine.apply_summary(_summary(), ZONE)

    transition = machine.apply_day_slots([_at(9), _at(18)], ZONE)

    assert transition.changed
    assert machine.state.time_bucket is TimeBucket.MORNING
    assert not machine.state.bucket_explicit


def test_bucket_correction_does_not_oscillate():
    """Re-applying the same slots after a correction is stable."""
    machine, _ = _machine()
    machine.apply_summary(_summary(), ZONE)
    slots = [_at(18), _at(19)]

    machine.apply_day_slots(slots, ZONE)
    second = machine.apply_day_slots(slots, ZONE)

    assert machine.state.time_bucket is TimeBucket.EVENING
    assert not second.changed


def test_explicit_non_empty_bucket_is_kept():
    """An explicit pick of a non-empty bucket is never overridden."""
    machine, _ = _machine()
    machine.apply_summary(_summary(), ZONE)
    machine.select_bucket(TimeBucket.EVENING)

    transition = machine.apply_day_slots([_at(13), _at(18)], ZONE)

    assert not transition.changed
    assert machine.state.time_bucket is TimeBucket.EVENING
    assert machine.state.bucket_explicit


def test_no_slots_leaves_bucket_alone():
    """A zero-slot day has nothing to correct to."""
    machine, _ = _machine()
    machine.apply_summary(_summary(), ZONE)

    transition = machine.apply_day_slots([], ZONE)

    assert not transition.changed
    assert machine.state.time_bucket is TimeBucket.AFTERNOON


def test_day_and_pick_invalidate_before_commit():
    """Changing the day or picking again invalidates the hold first."""
    seen: list[tuple[str, object]] = []
    machine = SelectionStateMachine(invalidate_hold=lambda reason: seen.append((reason, machine.state.selected_day)))
    machine.apply_summary(_summary(), ZONE)
    seen.clear()

    machine.select_day(D2)
    machine.pick_slot()

    # The hook sees the pre-change state.
    assert seen == [("day_change", D1), ("pick", D2)]


def test_bucket_helpers():
    """Slots are grouped by their hour in the appointment zone."""
    slots = [_at(9), _at(11), _at(12), _at(16), _at(17)]

    assert bucket_counts(slots, ZONE) == {
        TimeBucket.MORNING: 2,
        TimeBucket.AFTERNOON: 2,
        TimeBucket.EVENING: 1,
    }
    assert slots_in_bucket(slots, TimeBucket.EVENING, ZONE) == [_at(17)]


def test_hold_in_other_mode_requests_new_summary():
    """A hold echoing a different mode switches the selection and asks for that mode's summary."""
    machine, reasons = _machine()
    machine.apply_summary(_summary(), ZONE)
    reasons.clear()
    slot = SelectedSlot("pro_p", "off_p", _at(14))

    same = machine.confirm_slot(slot, hold_mode=AppointmentMode.IN_PERSON)
    other = machine.confirm_slot(slot, hold_mode=AppointmentMode.MOBILE)

    assert not same.refetch_summary
    assert other.refetch_summary
    assert machine.state.mode is AppointmentMode.MOBILE
    assert machine.state.selected_slot == slot
    assert reasons == []
