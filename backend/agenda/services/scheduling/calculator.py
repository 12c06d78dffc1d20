# backend/agenda/services/scheduling/calculator.py
"""
Per-day slot computation for one professional.

Merges, in priority order:
✓ full-day availability exceptions (short-circuit, no slots)
✓ weekly availability rules, stepped by the appointment duration
✓ time-range exceptions (first match in input order wins)
✓ blocking appointments and group sessions (occupancy)
✓ appointments booked off the rule grid (synthetic slots)
✓ biweekly hints on free, empty slots

Does NOT contain:
✗ Loading anything (the caller passes a consistent snapshot)
✗ Clock reads (past slots are the caller's concern)
"""

import logging
from datetime import date

from ...schemas.appointments import Appointment, GroupSession
from ...schemas.availability import AvailabilityException, AvailabilityRule
from ...schemas.slots import BiweeklyHint, DaySlots, FullDayBlock, TimeSlot
from .group_sessions import sessions_for_professional
from .status import is_blocking_appointment
from .timeutils import day_of_week, format_time, minutes_to_time_str, time_str_to_minutes

logger = logging.getLogger(__name__)


def compute_slots_for_day(
    target_date: date,
    availability_rules: list[AvailabilityRule],
    availability_exceptions: list[AvailabilityException],
    appointments: list[Appointment],
    group_sessions: list[GroupSession] | None = None,
    biweekly_hints: list[BiweeklyHint] | None = None,
    duration_minutes: int = 50,
    professional_id: str | None = None,
) -> DaySlots:
    """
    Compute the time slots of target_date.

    Returns:
        DaySlots with slots sorted by time, or an empty list plus
        full_day_block when an exception closes the whole day.
    """
    if duration_minutes <= 0:
        raise ValueError(f"duration_minutes must be positive, got {duration_minutes}")

    weekday = day_of_week(target_date)
    day_appointments = [apt for apt in appointments if apt.scheduled_at.date() == target_date]
    sessions = sessions_for_professional(group_sessions or [], professional_id, target_date)
    group_ranges = [
        (session.scheduled_at.hour * 60 + session.scheduled_at.minute,
         session.end_at.hour * 60 + session.end_at.minute)
        for session in sessions
    ]

    # Step 1: Full-day block
    full_day = _find_full_day_exception(availability_exceptions, target_date, weekday)
    if full_day is not None:
        return DaySlots(
            slots=[],
            full_day_block=FullDayBlock(reason=full_day.reason, is_clinic_wide=full_day.is_clinic_wide),
        )

    day_rules = [rule for rule in availability_rules if rule.day_of_week == weekday and rule.is_active]

    # Step 2: No template for the weekday, existing bookings stay visible
    if not day_rules:
        by_time = _group_by_start_time(day_appointments)
        return DaySlots(
            slots=[
                TimeSlot(time=time_str, is_available=False, appointments=by_time[time_str])
                for time_str in sorted(by_time)
            ],
            full_day_block=None,
        )

    by_time = _group_by_start_time(day_appointments)
    slots: list[TimeSlot] = []

    # Step 3-5: Rule slots, exceptions, occupancy
    for rule in day_rules:
        current = time_str_to_minutes(rule.start_time)
        end = time_str_to_minutes(rule.end_time)

        while current + duration_minutes <= end:
            time_str = minutes_to_time_str(current)
            exception = _find_time_exception(availability_exceptions, target_date, weekday, time_str)
            slot_appointments = by_time.get(time_str, [])
            occupied = (
                any(is_blocking_appointment(apt) for apt in slot_appointments)
                or _inside_group_session(group_ranges, current)
            )
            slots.append(TimeSlot(
                time=time_str,
                is_available=exception is None and not occupied,
                appointments=list(slot_appointments),
                is_blocked=exception is not None,
                block_reason=exception.reason if exception is not None and exception.reason else None,
            ))
            current += duration_minutes

    # Step 6: Appointments that start off the rule grid
    existing_times = {slot.time for slot in slots}
    for time_str, slot_appointments in by_time.items():
        if time_str in existing_times:
            continue
        exception = _find_time_exception(availability_exceptions, target_date, weekday, time_str)
        slots.append(TimeSlot(
            time=time_str,
            is_available=False,
            appointments=list(slot_appointments),
            is_blocked=exception is not None,
            block_reason=exception.reason if exception is not None and exception.reason else None,
        ))
        existing_times.add(time_str)

    slots.sort(key=lambda slot: slot.time)

    # Step 7: Biweekly hints on free, empty slots
    if biweekly_hints:
        date_str = target_date.isoformat()
        for slot in slots:
            if not slot.is_available or slot.appointments:
                continue
            hint = next(
                (
                    h for h in biweekly_hints
                    if h.time == slot.time
                    and (not professional_id or h.professional_profile_id == professional_id)
                    and (h.date is None or h.date == date_str)
                ),
                None,
            )
            if hint is not None:
                slot.biweekly_hint = hint

    logger.debug(f"Computed {len(slots)} slots for {target_date.isoformat()} (professional={professional_id})")
    return DaySlots(slots=slots, full_day_block=None)


# ── Helpers ──────────────────────────────────────────────────────────────


def _exception_matches_day(ex: AvailabilityException, target_date: date, weekday: int) -> bool:
    if ex.is_recurring:
        return ex.day_of_week == weekday
    return ex.date == target_date


def _find_full_day_exception(
    exceptions: list[AvailabilityException],
    target_date: date,
    weekday: int,
) -> AvailabilityException | None:
    for ex in exceptions:
        if ex.is_available or ex.start_time or ex.end_time:
            continue
        if _exception_matches_day(ex, target_date, weekday):
            return ex
    return None


def _find_time_exception(
    exceptions: list[AvailabilityException],
    target_date: date,
    weekday: int,
    time_str: str,
) -> AvailabilityException | None:
    """
    First blocking exception whose [start, end) contains time_str.

    Input order decides between overlapping exceptions.
    """
    # TODO: decide whether date-specific exceptions should win over recurring ones
    # regardless of order once the clinic settings screen can express priorities.
    for ex in exceptions:
        if ex.is_available or not ex.start_time or not ex.end_time:
            continue
        if not ex.start_time <= time_str < ex.end_time:
            continue
        if _exception_matches_day(ex, target_date, weekday):
            return ex
    return None


def _group_by_start_time(appointments: list[Appointment]) -> dict[str, list[Appointment]]:
    """Appointments keyed by their exact "HH:MM" start, in input order."""
    by_time: dict[str, list[Appointment]] = {}
    for apt in appointments:
        by_time.setdefault(format_time(apt.scheduled_at), []).append(apt)
    return by_time


def _inside_group_session(ranges: list[tuple[int, int]], slot_minutes: int) -> bool:
    return any(start <= slot_minutes < end for start, end in ranges)
