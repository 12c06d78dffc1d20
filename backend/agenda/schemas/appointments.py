# backend/agenda/schemas/appointments.py

from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from .availability import TIME_PATTERN


class AppointmentStatus(str, Enum):
    AGENDADO = "AGENDADO"
    CONFIRMADO = "CONFIRMADO"
    FINALIZADO = "FINALIZADO"
    CANCELADO_ACORDADO = "CANCELADO_ACORDADO"
    CANCELADO_FALTA = "CANCELADO_FALTA"
    CANCELADO_PROFISSIONAL = "CANCELADO_PROFISSIONAL"


class AppointmentType(str, Enum):
    CONSULTA = "CONSULTA"
    TAREFA = "TAREFA"
    LEMBRETE = "LEMBRETE"
    NOTA = "NOTA"
    REUNIAO = "REUNIAO"


class Modality(str, Enum):
    ONLINE = "ONLINE"
    PRESENCIAL = "PRESENCIAL"


class RecurrenceType(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class RecurrenceEndType(str, Enum):
    BY_DATE = "BY_DATE"
    BY_OCCURRENCES = "BY_OCCURRENCES"
    INDEFINITE = "INDEFINITE"


# Entry types that do not consume a slot by default
NON_BLOCKING_TYPES = frozenset({AppointmentType.LEMBRETE, AppointmentType.NOTA})


class PatientContact(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    consent_whatsapp: bool = False
    consent_email: bool = False

    model_config = {"from_attributes": True}


class Appointment(BaseModel):
    id: str
    professional_profile_id: str
    scheduled_at: datetime
    end_at: datetime

    status: AppointmentStatus = AppointmentStatus.AGENDADO
    type: AppointmentType = AppointmentType.CONSULTA
    blocks_time: bool = True
    modality: Optional[Modality] = None

    group_id: Optional[str] = None
    recurrence_id: Optional[str] = None
    additional_professional_ids: list[str] = Field(default_factory=list)

    patient: Optional[PatientContact] = None
    title: Optional[str] = None
    notes: Optional[str] = None
    price: Optional[float] = None

    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @property
    def display_name(self) -> str:
        if self.patient is not None:
            return self.patient.name
        return self.title or "outro compromisso"


class AppointmentRecurrence(BaseModel):
    id: str
    professional_profile_id: str
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None

    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    day_of_week: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)
    duration: int

    start_date: date
    end_date: Optional[date] = None
    occurrences: Optional[int] = None
    last_generated_date: Optional[date] = None

    modality: Optional[Modality] = None
    is_active: bool = True
    exceptions: list[str] = Field(default_factory=list)
    additional_professional_ids: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class GroupParticipant(BaseModel):
    appointment_id: str
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    status: AppointmentStatus

    model_config = {"from_attributes": True}


class GroupSession(BaseModel):
    """Read aggregate of the appointments sharing group_id and scheduled_at."""
    group_id: str
    group_name: Optional[str] = None
    scheduled_at: datetime
    end_at: datetime
    professional_profile_id: str
    participants: list[GroupParticipant] = Field(default_factory=list)
    additional_professional_ids: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


# ── Request bodies ───────────────────────────────────────────────────────


class RecurrenceOptions(BaseModel):
    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    end_date: Optional[date] = None
    occurrences: Optional[int] = Field(default=None, ge=1, le=52)


class AppointmentCreate(BaseModel):
    professional_profile_id: str
    patient_id: Optional[str] = None
    date: str = Field(description="DD/MM/YYYY or YYYY-MM-DD")
    start_time: str = Field(pattern=TIME_PATTERN)
    duration: Optional[int] = None
    type: AppointmentType = AppointmentType.CONSULTA
    modality: Optional[Modality] = None
    title: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    group_id: Optional[str] = None
    additional_professional_ids: list[str] = Field(default_factory=list)
    recurrence: Optional[RecurrenceOptions] = None


class StatusUpdate(BaseModel):
    status: AppointmentStatus
    admin_override: bool = False


class CancelRequest(BaseModel):
    reason: str
    cancel_type: str = Field(default="single", pattern=r"^(single|series)$")
    status: AppointmentStatus = AppointmentStatus.CANCELADO_PROFISSIONAL
    notify_patient: bool = False


# ── Responses ────────────────────────────────────────────────────────────


class AppointmentCreateResult(BaseModel):
    appointments: list[Appointment]
    recurrence: Optional[AppointmentRecurrence] = None
    summary: Optional[str] = None


class CancelResponse(BaseModel):
    cancel_type: str
    status: AppointmentStatus
    cancelled_ids: list[str]
    deactivated_recurrence_id: Optional[str] = None
    notifications_queued: int = 0
