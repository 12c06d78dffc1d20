# backend/agenda/services/scheduling/__init__.py
"""
Scheduling core.

Pure functions over a snapshot of rules, exceptions and appointments:
- Slot computation for one professional (calculator)
- All-professionals overview grid (grid)
- Recurrence expansion, editing, skipping and finalization (recurrence)
- Status workflow and cancellation policy (status)
"""

from .config import AgendaConfig, get_agenda_config
from .errors import AgendaError, Conflict, ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from .calculator import compute_slots_for_day
from .grid import compute_multi_professional_grid
from .group_sessions import build_group_sessions, sessions_for_professional
from .biweekly import compute_biweekly_hints, find_paired_recurrence, is_off_week
from .recurrence import (
    apply_recurrence_edit,
    expand_recurrence,
    finalize_recurrence,
    plan_extension,
    preview_frequency_change,
    toggle_exception,
)
from .status import plan_cancellation, transition_status

__all__ = [
    "AgendaConfig",
    "get_agenda_config",
    "AgendaError",
    "Conflict",
    "ConflictError",
    "InvalidTransitionError",
    "NotFoundError",
    "ValidationError",
    "compute_slots_for_day",
    "compute_multi_professional_grid",
    "build_group_sessions",
    "sessions_for_professional",
    "compute_biweekly_hints",
    "find_paired_recurrence",
    "is_off_week",
    "apply_recurrence_edit",
    "expand_recurrence",
    "finalize_recurrence",
    "plan_extension",
    "preview_frequency_change",
    "toggle_exception",
    "plan_cancellation",
    "transition_status",
]
