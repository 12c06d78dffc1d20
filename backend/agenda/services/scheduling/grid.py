# backend/agenda/services/scheduling/grid.py
"""
All-professionals overview grid.

Fixed half-hour cells from config.grid_start_hour to config.grid_end_hour,
independent of any professional's rules or exceptions. Not a booking
surface: booking from here goes through the single-professional slots.
"""

import logging
from datetime import date

from ...schemas.appointments import Appointment, GroupSession
from ...schemas.slots import TimeSlot
from .config import AgendaConfig, get_agenda_config
from .status import is_blocking_appointment
from .timeutils import minutes_to_time_str

logger = logging.getLogger(__name__)


def compute_multi_professional_grid(
    target_date: date,
    appointments: list[Appointment],
    group_sessions: list[GroupSession] | None = None,
    config: AgendaConfig | None = None,
) -> list[TimeSlot]:
    """
    Bucket every appointment of target_date into [cell, cell + step).

    A cell is available when it holds no blocking appointment and no
    group session starts inside it.
    """
    config = config or get_agenda_config()
    step = config.grid_step_minutes

    day_appointments = [apt for apt in appointments if apt.scheduled_at.date() == target_date]
    session_starts = [
        s.scheduled_at.hour * 60 + s.scheduled_at.minute
        for s in (group_sessions or [])
        if s.scheduled_at.date() == target_date
    ]

    slots = []
    for cell in range(config.grid_start_hour * 60, config.grid_end_hour * 60, step):
        cell_appointments = [
            apt for apt in day_appointments
            if cell <= apt.scheduled_at.hour * 60 + apt.scheduled_at.minute < cell + step
        ]
        has_group = any(cell <= start < cell + step for start in session_starts)
        slots.append(TimeSlot(
            time=minutes_to_time_str(cell),
            is_available=not has_group and not any(is_blocking_appointment(a) for a in cell_appointments),
            appointments=cell_appointments,
        ))

    logger.debug(f"Grid for {target_date.isoformat()}: {len(slots)} cells, {len(day_appointments)} appointments")
    return slots
