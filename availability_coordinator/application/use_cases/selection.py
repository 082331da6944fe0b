from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import date, datetime

from availability_coordinator.application.utils.zoned_time import hour_of_day_in_zone, today_in_zone
from availability_coordinator.domain.entities.availability import AllowedModes, AvailabilitySummary
from availability_coordinator.domain.entities.selection_key import AppointmentMode
from availability_coordinator.domain.entities.selection_state import (
    BUCKET_CORRECTION_ORDER,
    SelectedSlot,
    SelectionState,
    TimeBucket,
)


@dataclass(frozen=True)
class Transition:
    """Outcome of one selection event."""

    state: SelectionState
    changed: bool = False
    invalidated_hold: bool = False
    refetch_summary: bool = False  # mode differs from the summary we hold
    refetch_day: bool = False
    rejected: str | None = None


def bucket_counts(slots: Iterable[datetime], zone: str) -> dict[TimeBucket, int]:
    counts = {bucket: 0 for bucket in TimeBucket}
    for instant in slots:
        counts[TimeBucket.for_hour(hour_of_day_in_zone(instant, zone))] += 1
    return counts


def slots_in_bucket(slots: Iterable[datetime], bucket: TimeBucket, zone: str) -> list[datetime]:
    return [s for s in slots if TimeBucket.for_hour(hour_of_day_in_zone(s, zone)) is bucket]


class SelectionStateMachine:
    """
    Owns {mode, day, time bucket, slot}.

    Every change goes through one of the event methods below; none is ever
    triggered by derived-state recomputation, so applying the same facts twice
    is a no-op. Changes that can strand a hold call `invalidate_hold` before the
    new state is committed.
    """

    def __init__(
        self,
        initial_mode: AppointmentMode = AppointmentMode.IN_PERSON,
        invalidate_hold: Callable[[str], None] | None = None,
    ) -> None:
        self._initial_mode = initial_mode
        self._invalidate_hold = invalidate_hold
        self._state = SelectionState(mode=initial_mode)
        self._allowed = AllowedModes()
        self._logger = logging.getLogger(__name__)

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def allowed_modes(self) -> AllowedModes:
        return self._allowed

    def _commit(
        self,
        state: SelectionState,
        invalidate: str | None = None,
        refetch_summary: bool = False,
        refetch_day: bool = False,
    ) -> Transition:
        if invalidate and self._invalidate_hold is not None:
            self._invalidate_hold(invalidate)
        changed = state != self._state
        self._state = state
        return Transition(
            state=state,
            changed=changed,
            invalidated_hold=invalidate is not None,
            refetch_summary=refetch_summary,
            refetch_day=refetch_day,
        )

    def reset(self) -> Transition:
        self._allowed = AllowedModes()
        return self._commit(SelectionState(mode=self._initial_mode), invalidate="cancelled")

    def _resolve_mode(self, summary: AvailabilitySummary) -> AppointmentMode:
        only = summary.allowed_modes.only_mode()
        if only is not None:
            return only
        if summary.allowed_modes.allows(summary.mode):
            return summary.mode
        if summary.allowed_modes.allows(self._state.mode):
            return self._state.mode
        return summary.mode

    def apply_summary(self, summary: AvailabilitySummary, zone: str, now: datetime | None = None) -> Transition:
        """
        A summary arrived (first load or refresh). The echoed mode is authoritative;
        a single-mode service locks the mode; the day snaps to the server's first
        day (or today in `zone`) when unset or no longer listed.
        """
        self._allowed = summary.allowed_modes
        current = self._state

        mode = self._resolve_mode(summary)
        mode_locked = summary.allowed_modes.only_mode() is not None
        mode_changed = mode != current.mode

        default_day = summary.days[0].date if summary.days else today_in_zone(zone, now)
        day = None if mode_changed else current.selected_day
        if day is None or not summary.has_day(day):
            day = default_day
        day_changed = day != current.selected_day

        if not mode_changed and not day_changed:
            return self._commit(replace(current, mode_locked=mode_locked))

        if mode_changed:
            self._logger.info("Mode switched by server facts", extra={"mode": mode.value})

        return self._commit(
            replace(
                current,
                mode=mode,
                mode_locked=mode_locked,
                selected_day=day,
                bucket_explicit=False,
                selected_slot=None,
            ),
            invalidate="mode_change" if mode_changed else "day_change",
            refetch_summary=mode != summary.mode,
            refetch_day=True,
        )

    def select_mode(self, mode: AppointmentMode) -> Transition:
        current = self._state
        if mode == current.mode:
            return Transition(state=current)
        if current.mode_locked or not self._allowed.allows(mode):
            return Transition(state=current, rejected="mode_not_offered")
        return self._commit(
            replace(current, mode=mode, selected_day=None, bucket_explicit=False, selected_slot=None),
            invalidate="mode_change",
            refetch_summary=True,
        )

    def select_day(self, day: date) -> Transition:
        current = self._state
        if day == current.selected_day:
            return Transition(state=current)
        return self._commit(
            replace(current, selected_day=day, bucket_explicit=False, selected_slot=None),
            invalidate="day_change",
            refetch_day=True,
        )

    def select_bucket(self, bucket: TimeBucket) -> Transition:
        current = self._state
        if bucket is current.time_bucket and current.bucket_explicit:
            return Transition(state=current)
        strands_hold = current.selected_slot is not None or bucket is not current.time_bucket
        return self._commit(
            replace(current, time_bucket=bucket, bucket_explicit=True, selected_slot=None),
            invalidate="bucket_change" if strands_hold else None,
        )

    def apply_day_slots(self, slots: Iterable[datetime], zone: str) -> Transition:
        """
        Correct an empty bucket to the first non-empty one (afternoon, morning,
        evening). A non-empty selection, explicit or not, is left alone.
        """
        counts = bucket_counts(slots, zone)
        current = self._state
        if counts[current.time_bucket] > 0 or not any(counts.values()):
            return Transition(state=current)

        target = next(bucket for bucket in BUCKET_CORRECTION_ORDER if counts[bucket] > 0)
        return self._commit(replace(current, time_bucket=target, bucket_explicit=False))

    def pick_slot(self) -> Transition:
        """Explicit pick: the old slot and hold go before the new hold is requested."""
        return self._commit(replace(self._state, selected_slot=None), invalidate="pick")

    def confirm_slot(self, slot: SelectedSlot, hold_mode: AppointmentMode | None = None) -> Transition:
        # The hold's echoed mode is bound server-side to the slot; adopt it and reload
        # availability for it when it differs from what is on screen.
        mode = hold_mode or self._state.mode
        return self._commit(
            replace(self._state, selected_slot=slot, mode=mode),
            refetch_summary=mode != self._state.mode,
        )

    def adopt_hold(self, slot: SelectedSlot, mode: AppointmentMode, day: date) -> Transition:
        """Rebuild selection from a hold the server just confirmed (session restore)."""
        return self._commit(
            replace(self._state, mode=mode, selected_day=day, bucket_explicit=False, selected_slot=slot),
            refetch_summary=mode != self._state.mode,
            refetch_day=day != self._state.selected_day,
        )

    def clear_slot(self) -> Transition:
        return self._commit(replace(self._state, selected_slot=None))

    def restore(self, state: SelectionState) -> Transition:
        """Put back a pre-image verbatim after a tentative change failed."""
        return self._commit(state)
