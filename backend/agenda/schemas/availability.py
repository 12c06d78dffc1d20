# backend/agenda/schemas/availability.py

import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

TIME_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)$"


class AvailabilityRuleCreate(BaseModel):
    professional_profile_id: str
    day_of_week: int = Field(ge=0, le=6, description="0 = Sunday .. 6 = Saturday")
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)
    is_active: bool = True

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class AvailabilityRule(AvailabilityRuleCreate):
    """Recurring weekly template of one professional."""
    id: Optional[str] = None
    professional_profile_id: Optional[str] = None


class AvailabilityExceptionCreate(BaseModel):
    professional_profile_id: Optional[str] = None
    date: Optional[datetime.date] = None
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    is_recurring: bool = False
    is_available: bool = False
    start_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    reason: Optional[str] = None
    is_clinic_wide: bool = False

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def _check_scope(self):
        if self.is_recurring and self.day_of_week is None:
            raise ValueError("day_of_week is required for recurring exceptions")
        if not self.is_recurring and self.date is None:
            raise ValueError("date is required for single-date exceptions")
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        if self.start_time and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None


class AvailabilityException(AvailabilityExceptionCreate):
    """
    One-off or weekly override of the availability template.

    is_available=False with no time range blocks the entire day of its scope.
    """
    id: Optional[str] = None
