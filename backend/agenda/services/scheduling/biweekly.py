# backend/agenda/services/scheduling/biweekly.py
"""
Biweekly pairing.

A BIWEEKLY series leaves its slot empty every other week. That "off week"
slot is where a second patient is usually placed, so the agenda surfaces
the first patient's name there as an advisory hint.

Slot keys have the form "YYYY-MM-DD|professional_id|HH:MM".
"""

from datetime import date, datetime

from ...schemas.appointments import AppointmentRecurrence, RecurrenceType
from ...schemas.slots import BiweeklyHint
from .timeutils import date_range, day_of_week, format_time, to_date_string, week_start


def is_off_week(start_date: date, target: date | str) -> bool:
    """True when target falls in an odd Monday-based week counted from start_date."""
    if isinstance(target, str):
        target = date.fromisoformat(target)
    weeks = (week_start(target) - week_start(start_date)).days // 7
    return weeks % 2 != 0


def build_slot_key(scheduled_at: datetime, professional_id: str) -> str:
    return f"{to_date_string(scheduled_at)}|{professional_id}|{format_time(scheduled_at)}"


def find_paired_recurrence(
    scheduled_at: datetime,
    professional_id: str,
    patient_id: str | None,
    recurrences: list[AppointmentRecurrence],
) -> AppointmentRecurrence | None:
    """Same professional, same weekday and time, different patient."""
    time_str = format_time(scheduled_at)
    weekday = day_of_week(scheduled_at)
    for rec in recurrences:
        if (
            rec.professional_profile_id == professional_id
            and rec.start_time == time_str
            and rec.day_of_week == weekday
            and rec.patient_id != patient_id
        ):
            return rec
    return None


def compute_biweekly_hints(
    range_start: date,
    range_end: date,
    recurrences: list[AppointmentRecurrence],
    occupied_slots: set[str],
) -> list[BiweeklyHint]:
    """One hint per off-week date of each active biweekly series, unless the slot is taken."""
    candidates = [
        rec for rec in recurrences
        if rec.recurrence_type == RecurrenceType.BIWEEKLY and rec.is_active and rec.patient_name
    ]
    hints = []

    for current in date_range(range_start, range_end):
        weekday = day_of_week(current)
        date_str = current.isoformat()
        for rec in candidates:
            if rec.day_of_week != weekday or not is_off_week(rec.start_date, current):
                continue
            if f"{date_str}|{rec.professional_profile_id}|{rec.start_time}" in occupied_slots:
                continue
            hints.append(BiweeklyHint(
                time=rec.start_time,
                professional_profile_id=rec.professional_profile_id,
                patient_name=rec.patient_name,
                recurrence_id=rec.id,
                date=date_str,
            ))

    return hints
