# backend/agenda/schemas/slots.py
"""
Pydantic schemas for slots API.
"""

from datetime import date
from typing import Optional
from pydantic import BaseModel, Field

from .appointments import Appointment


class BiweeklyHint(BaseModel):
    """Alternate-week occupant of a biweekly series. Advisory only, never blocks."""
    time: str
    professional_profile_id: str
    patient_name: str
    appointment_id: Optional[str] = None
    recurrence_id: Optional[str] = None
    date: Optional[str] = None

    model_config = {"from_attributes": True}


class TimeSlot(BaseModel):
    """One slot of a professional's day."""
    time: str  # "HH:MM"
    is_available: bool
    appointments: list[Appointment] = Field(default_factory=list)
    is_blocked: bool = False
    block_reason: Optional[str] = None
    biweekly_hint: Optional[BiweeklyHint] = None

    model_config = {"from_attributes": True}


class FullDayBlock(BaseModel):
    reason: Optional[str] = None
    is_clinic_wide: bool = False

    model_config = {"from_attributes": True}


class DaySlots(BaseModel):
    slots: list[TimeSlot] = Field(default_factory=list)
    full_day_block: Optional[FullDayBlock] = None

    model_config = {"from_attributes": True}


class SlotsDayResponse(BaseModel):
    """Response with detailed slots for a day."""
    date: date
    professional_profile_id: Optional[str] = None
    duration_minutes: Optional[int] = Field(
        default=None,
        description="Step used for rule-generated slots; None for the overview grid",
    )
    slots: list[TimeSlot]
    full_day_block: Optional[FullDayBlock] = None

    model_config = {"from_attributes": True}
