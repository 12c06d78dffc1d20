# backend/agenda/schemas/recurrences.py

from datetime import date
from typing import Literal, Optional
from pydantic import BaseModel, Field

from .appointments import Appointment, AppointmentRecurrence, Modality, RecurrenceEndType, RecurrenceType
from .availability import TIME_PATTERN


class RecurrenceDescriptor(BaseModel):
    """Everything needed to expand a new series into occurrence dates."""
    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    start_date: date
    start_time: str = Field(pattern=TIME_PATTERN)
    duration: int
    occurrences: Optional[int] = None
    end_date: Optional[date] = None
    exceptions: list[str] = Field(default_factory=list)


class RecurrencePatch(BaseModel):
    """
    Edit request for a series or a single occurrence.

    Only fields that are set are applied. `date`, `notes` and `price` only make
    sense for a single occurrence; `recurrence_type`, `day_of_week` and the end
    condition only for the series.
    """
    recurrence_type: Optional[RecurrenceType] = None
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    duration: Optional[int] = None
    modality: Optional[Modality] = None
    recurrence_end_type: Optional[RecurrenceEndType] = None
    end_date: Optional[date] = None
    occurrences: Optional[int] = Field(default=None, ge=1, le=52)
    additional_professional_ids: Optional[list[str]] = None

    date: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[float] = Field(default=None, ge=0)


class RecurrenceEditRequest(RecurrencePatch):
    apply_to: Literal["future"] = "future"


class ExceptionToggleRequest(BaseModel):
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    action: Literal["skip", "unskip"]


class FinalizeRequest(BaseModel):
    end_date: date
    cancel_future_appointments: bool = False
    immediate: bool = False


class FrequencyPreviewRequest(BaseModel):
    recurrence_type: RecurrenceType


class ConflictRead(BaseModel):
    index: int
    date: str
    conflicts_with: Optional[str] = None
    appointment_id: Optional[str] = None

    model_config = {"from_attributes": True}


class RecurrenceDetail(BaseModel):
    recurrence: AppointmentRecurrence
    summary: str
    future_appointments: list[Appointment]


class RecurrenceEditResponse(BaseModel):
    message: str
    updated_count: int
    removed_count: int
    recurrence: Optional[AppointmentRecurrence] = None
    appointments: list[Appointment] = Field(default_factory=list)


class FrequencyPreviewResponse(BaseModel):
    recurrence_type: RecurrenceType
    removed: list[Appointment]


class ExceptionToggleResponse(BaseModel):
    exceptions: list[str]
    affected_appointment_id: Optional[str] = None
    noop: bool = False
    message: str


class FinalizeResponse(BaseModel):
    recurrence: AppointmentRecurrence
    cancelled_count: int
    appointments_after_end_date: int
    noop: bool = False
    message: str
