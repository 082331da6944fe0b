#!/usr/bin/env python3
"""
Interactive local availability harness (no UI).

Usage:
  python3 scripts/browse_local.py [professional_id] [service_id]

What it does:
- Opens one booking session against the wired backend (mock unless
  BOOKING_API_BASE_URL is set and ENV is not dev/local)
- Lets you switch mode/day/bucket, hold a slot, and watch the countdown
- Prints the selection, visible slots and the message line after every command
"""

from __future__ import annotations

import asyncio
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from availability_coordinator.application.use_cases.booking_session import (  # noqa: E402
    BookingSession,
    DrawerContext,
    SessionView,
)
from availability_coordinator.core.logging import configure_logging  # noqa: E402
from availability_coordinator.domain.entities.selection_key import AppointmentMode  # noqa: E402
from availability_coordinator.domain.entities.selection_state import TimeBucket  # noqa: E402
from availability_coordinator.wiring.dependencies import DEMO_PROFESSIONAL_ID, open_booking_session  # noqa: E402


def _print_help() -> None:
    print("Commands:")
    print("  /mode in_person|mobile  -> switch appointment mode")
    print("  /day YYYY-MM-DD         -> select a day")
    print("  /bucket morning|afternoon|evening")
    print("  /pick N                 -> hold the Nth visible slot")
    print("  /hold                   -> show the countdown")
    print("  /checkout               -> hand the hold to checkout")
    print("  /waitlist [YYYY-MM-DDTHH:MM]")
    print("  /refresh, /quit")


def _print_view(view: SessionView) -> None:
    state = view.state
    print("\n--- Selection ---")
    print(f"zone: {view.appointment_zone} (viewer {view.viewer_zone})")
    print(f"mode: {state.mode.value}{' (locked)' if state.mode_locked else ''}")
    print(f"day: {state.selected_day}  bucket: {state.time_bucket.value}")
    days = " ".join(f"{weekday} {num}" for _, weekday, num in view.day_scroller())
    print(f"days: {days or '(none)'}")

    print("\n--- Slots ---")
    slots = view.visible_slots()
    for idx, instant in enumerate(slots, start=1):
        print(f"  {idx:2d}. {view.slot_label(instant)}")
    if not slots:
        print("  (no times in this part of the day)")
    for pro_id, pro_slots in view.secondary_slots.items():
        print(f"  other pro {pro_id}: {len(pro_slots)} times")

    if view.selected_line:
        print(f"\nselected: {view.selected_line}")
    if view.local_time_line:
        print(f"your time: {view.local_time_line}")
    if view.countdown.label:
        urgent = " (hurry)" if view.countdown.is_urgent else ""
        print(f"hold: {view.countdown.label}{urgent}")
    if view.login_required:
        print(f"login required for: {view.login_required}")
    if view.error:
        print(f"message: {view.error}")
    print("-" * 60)


async def _handle(session: BookingSession, cmd: str, args: list[str]) -> bool:
    if cmd == "/mode" and args:
        _print_view(await session.select_mode(AppointmentMode(args[0].upper())))
    elif cmd == "/day" and args:
        _print_view(await session.select_day(date.fromisoformat(args[0])))
    elif cmd == "/bucket" and args:
        _print_view(session.select_bucket(TimeBucket(args[0].upper())))
    elif cmd == "/pick" and args:
        view = session.view()
        slots = view.visible_slots()
        idx = int(args[0]) - 1
        if not 0 <= idx < len(slots):
            print("No such slot.")
            return True
        result = await session.pick_slot(session.context.professional_id, slots[idx])
        if result.hold is not None:
            print(f"Held {result.hold.hold_id}")
        _print_view(session.view())
    elif cmd == "/hold":
        _print_view(session.view())
    elif cmd == "/checkout":
        handoff = session.continue_to_checkout()
        print(handoff.query_params() if handoff else "Nothing to check out.")
    elif cmd == "/waitlist":
        result = await session.join_waitlist(desired_local=args[0] if args else None)
        print(result.message or ("login required" if result.login_required else "(no message)"))
    elif cmd == "/refresh":
        _print_view(await session.refresh())
    elif cmd in ("/quit", "/exit"):
        return False
    else:
        _print_help()
    return True


async def main() -> None:
    configure_logging()
    professional_id = sys.argv[1] if len(sys.argv) > 1 else DEMO_PROFESSIONAL_ID
    service_id = sys.argv[2] if len(sys.argv) > 2 else "svc_demo"

    session = open_booking_session(DrawerContext(professional_id=professional_id, service_id=service_id))
    print("\nLocal Availability Harness")
    print("-" * 60)
    _print_help()
    _print_view(await session.open())

    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, "\n> ")).strip()
            except (EOFError, KeyboardInterrupt):
                print("\nBye!")
                return
            if not line:
                continue
            cmd, *args = line.split()
            try:
                if not await _handle(session, cmd.lower(), args):
                    print("Bye!")
                    return
            except ValueError as e:
                print(f"Bad input: {e}")
    finally:
        await session.close()


if __name__ == "__main__":
    asyncio.run(main())
