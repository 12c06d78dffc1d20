# backend/agenda/services/scheduling/config.py
"""
Agenda configuration for slot computation and recurrence expansion.
"""

from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class AgendaConfig:
    """
    Configuration for the scheduling core.

    Attributes:
        max_occurrences: Hard cap for BY_OCCURRENCES series (one year weekly)
        indefinite_window_months: Horizon materialized when an INDEFINITE series is created
        extension_months: Window added by each INDEFINITE extension run
        extension_threshold_months: Extend only when the last generated date is this close
        grid_start_hour / grid_end_hour: Bounds of the multi-professional overview grid
        grid_step_minutes: Cell size of the multi-professional overview grid
        min_duration_minutes / max_duration_minutes: Bounds for any calendar entry
        min_consultation_minutes: Lower bound for patient visits (CONSULTA)
        default_appointment_duration: Used when a professional has no duration configured
    """
    max_occurrences: int = 52
    indefinite_window_months: int = 6
    extension_months: int = 3
    extension_threshold_months: int = 2
    grid_start_hour: int = 7
    grid_end_hour: int = 21
    grid_step_minutes: int = 30
    min_duration_minutes: int = 5
    max_duration_minutes: int = 480
    min_consultation_minutes: int = 15
    default_appointment_duration: int = 50

    def __post_init__(self):
        """Validate configuration."""
        if not 0 <= self.grid_start_hour < self.grid_end_hour <= 24:
            raise ValueError(
                f"grid hours must satisfy 0 <= start < end <= 24, "
                f"got {self.grid_start_hour}-{self.grid_end_hour}"
            )
        if self.grid_step_minutes <= 0 or 60 % self.grid_step_minutes != 0:
            raise ValueError(f"grid_step_minutes must divide 60, got {self.grid_step_minutes}")
        if self.max_occurrences < 1:
            raise ValueError(f"max_occurrences must be >= 1, got {self.max_occurrences}")

    @property
    def grid_slots_per_day(self) -> int:
        """
        Number of cells in the overview grid.

        - 07:00-21:00 at 30 min → 28 cells
        """
        return (self.grid_end_hour - self.grid_start_hour) * 60 // self.grid_step_minutes

    def min_duration_for(self, patient_visit: bool) -> int:
        return self.min_consultation_minutes if patient_visit else self.min_duration_minutes


@lru_cache
def get_agenda_config() -> AgendaConfig:
    """
    Get agenda configuration (singleton).

    Clinic-specific overrides are passed explicitly by callers.
    """
    return AgendaConfig()
