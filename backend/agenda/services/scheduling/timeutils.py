# backend/agenda/services/scheduling/timeutils.py
"""
Date/time helpers for the clinic-local calendar.

All values are naive and interpreted in the clinic's local time.
Weekdays follow the agenda convention: 0 = Sunday .. 6 = Saturday.
"""

import calendar
import re
from datetime import date, datetime, timedelta

from .config import AgendaConfig, get_agenda_config
from .errors import ValidationError

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_BR_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")


# ── Time of day ──────────────────────────────────────────────────────────


def parse_time(value: str) -> tuple[int, int]:
    """Parse "HH:mm" into (hour, minute). Raises ValidationError."""
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValidationError(f"Horario invalido (HH:mm): {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(f"Horario invalido (HH:mm): {value!r}")
    return hour, minute


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:mm" to minutes since midnight."""
    hour, minute = parse_time(value)
    return hour * 60 + minute


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to zero-padded "HH:mm"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_time(dt: datetime) -> str:
    return f"{dt.hour:02d}:{dt.minute:02d}"


def calculate_end_time(start_time: str | None, duration_minutes: int | None) -> str | None:
    """
    End time for a start "HH:mm" plus a duration in minutes.

    Returns None when either input is missing or the start is malformed.
    Wraps past midnight: ("23:30", 60) → "00:30".
    """
    if not start_time or not duration_minutes:
        return None
    match = _TIME_RE.match(start_time)
    if not match:
        return None
    total = int(match.group(1)) * 60 + int(match.group(2)) + duration_minutes
    return f"{(total // 60) % 24:02d}:{total % 60:02d}"


# ── Dates ────────────────────────────────────────────────────────────────


def to_date_string(value: date | datetime) -> str:
    """YYYY-MM-DD from the local calendar fields of value (no UTC conversion)."""
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def parse_date(value: str) -> date:
    """
    Parse a date in DD/MM/YYYY or YYYY-MM-DD.

    Impossible combinations (31/02/2026) are rejected, never rolled over.
    """
    if not isinstance(value, str):
        raise ValidationError(f"Data invalida: {value!r}")
    value = value.strip()
    match = _ISO_DATE_RE.match(value)
    if match:
        year, month, day = (int(g) for g in match.groups())
    else:
        match = _BR_DATE_RE.match(value)
        if not match:
            raise ValidationError(f"Data invalida (DD/MM/AAAA ou AAAA-MM-DD): {value!r}")
        day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        raise ValidationError(f"Data inexistente: {value!r}") from None


def to_iso_date(display_date: str) -> str:
    """DD/MM/YYYY → YYYY-MM-DD (ISO input is returned normalized)."""
    return parse_date(display_date).isoformat()


def to_display_date(value: str | date) -> str:
    """YYYY-MM-DD (or a date) → DD/MM/YYYY."""
    d = parse_date(value) if isinstance(value, str) else value
    return f"{d.day:02d}/{d.month:02d}/{d.year:04d}"


def combine_local(date_str: str, time_str: str) -> datetime:
    """Build a clinic-local datetime from a date string and "HH:mm"."""
    d = parse_date(date_str)
    hour, minute = parse_time(time_str)
    return datetime(d.year, d.month, d.day, hour, minute)


def add_months_to_date(value, months: int):
    """
    Add months keeping the day of month, clamped to the last day of the target month.

    Jan 31 + 1 → Feb 28 (or 29). Accepts date or datetime; the type is preserved.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def day_of_week(value: date | datetime) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (value.weekday() + 1) % 7


def week_start(value: date | datetime) -> date:
    """Monday of the week containing value."""
    d = value.date() if isinstance(value, datetime) else value
    return d - timedelta(days=d.weekday())


def week_end(value: date | datetime) -> date:
    """Sunday of the week containing value."""
    return week_start(value) + timedelta(days=6)


def week_days(start: date) -> list[date]:
    return [start + timedelta(days=i) for i in range(7)]


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of dates; swapped bounds are normalized."""
    if start > end:
        start, end = end, start
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def is_slot_in_past(date_str: str, slot_time: str, now: datetime) -> bool:
    return combine_local(date_str, slot_time) < now


def validate_duration(minutes: int, patient_visit: bool = True, config: AgendaConfig | None = None) -> int:
    """Duration bounds: [15, 480] for patient visits, [5, 480] otherwise."""
    config = config or get_agenda_config()
    low = config.min_duration_for(patient_visit)
    high = config.max_duration_minutes
    if not isinstance(minutes, int) or isinstance(minutes, bool) or not low <= minutes <= high:
        raise ValidationError(f"Duracao deve estar entre {low} e {high} minutos, recebido {minutes!r}")
    return minutes
