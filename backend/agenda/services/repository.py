# backend/agenda/services/repository.py
"""
SQLAlchemy access for the agenda.

Loads consistent snapshots for the scheduling core (as pydantic models)
and writes back its decisions. Datetimes are stored as ISO text in
clinic-local time; dates as YYYY-MM-DD.

Nothing here commits: callers wrap writes in database.unit_of_work.
"""

import json
import logging
from datetime import date, datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..models.generated import (
    Appointments,
    AppointmentRecurrences,
    AuditLog,
    AvailabilityExceptions,
    AvailabilityRules,
    Patients,
    ProfessionalProfiles,
    TherapyGroups,
    t_appointment_professionals,
    t_recurrence_professionals,
)
from ..schemas.appointments import (
    Appointment,
    AppointmentRecurrence,
    NON_BLOCKING_TYPES,
    PatientContact,
)
from ..schemas.availability import AvailabilityException, AvailabilityRule
from .scheduling.errors import NotFoundError

logger = logging.getLogger(__name__)


def _dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", ""))


def _d(value: str | None) -> date | None:
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _enum_value(value):
    return getattr(value, "value", value)


class AgendaRepository:
    """Agenda reads and writes on one Session."""

    def __init__(self, db: Session):
        self.db = db

    # ── Mapping ──────────────────────────────────────────────────────────

    def to_appointment(self, row: Appointments) -> Appointment:
        patient = None
        if row.patient is not None:
            patient = PatientContact(
                id=row.patient.id,
                name=row.patient.name,
                phone=row.patient.phone,
                email=row.patient.email,
                consent_whatsapp=bool(row.patient.consent_whatsapp),
                consent_email=bool(row.patient.consent_email),
            )
        return Appointment(
            id=row.id,
            professional_profile_id=row.professional_profile_id,
            scheduled_at=_dt(row.scheduled_at),
            end_at=_dt(row.end_at),
            status=row.status,
            type=row.type,
            blocks_time=bool(row.blocks_time),
            modality=row.modality,
            group_id=row.group_id,
            recurrence_id=row.recurrence_id,
            additional_professional_ids=[p.id for p in row.additional_professionals],
            patient=patient,
            title=row.title,
            notes=row.notes,
            price=row.price,
            cancellation_reason=row.cancellation_reason,
            cancelled_at=_dt(row.cancelled_at),
            confirmed_at=_dt(row.confirmed_at),
        )

    def to_recurrence(self, row: AppointmentRecurrences) -> AppointmentRecurrence:
        return AppointmentRecurrence(
            id=row.id,
            professional_profile_id=row.professional_profile_id,
            patient_id=row.patient_id,
            patient_name=row.patient.name if row.patient is not None else None,
            recurrence_type=row.recurrence_type,
            recurrence_end_type=row.recurrence_end_type,
            day_of_week=row.day_of_week,
            start_time=row.start_time,
            end_time=row.end_time,
            duration=row.duration,
            start_date=_d(row.start_date),
            end_date=_d(row.end_date),
            occurrences=row.occurrences,
            last_generated_date=_d(row.last_generated_date),
            modality=row.modality,
            is_active=bool(row.is_active),
            exceptions=sorted(json.loads(row.exceptions or "[]")),
            additional_professional_ids=[p.id for p in row.additional_professionals],
        )

    # ── Read ─────────────────────────────────────────────────────────────

    def get_professional(self, professional_id: str) -> ProfessionalProfiles:
        obj = self.db.get(ProfessionalProfiles, professional_id)
        if not obj:
            raise NotFoundError("ProfessionalProfile", professional_id)
        return obj

    def get_patient(self, patient_id: str) -> Patients:
        obj = self.db.get(Patients, patient_id)
        if not obj:
            raise NotFoundError("Patient", patient_id)
        return obj

    def get_appointment_row(self, appointment_id: str) -> Appointments:
        obj = self.db.get(Appointments, appointment_id)
        if not obj:
            raise NotFoundError("Appointment", appointment_id)
        return obj

    def get_appointment(self, appointment_id: str) -> Appointment:
        return self.to_appointment(self.get_appointment_row(appointment_id))

    def get_recurrence_row(self, recurrence_id: str) -> AppointmentRecurrences:
        obj = self.db.get(AppointmentRecurrences, recurrence_id)
        if not obj:
            raise NotFoundError("AppointmentRecurrence", recurrence_id)
        return obj

    def get_recurrence(self, recurrence_id: str) -> AppointmentRecurrence:
        return self.to_recurrence(self.get_recurrence_row(recurrence_id))

    def list_rules(self, professional_id: str) -> list[AvailabilityRule]:
        rows = (
            self.db.query(AvailabilityRules)
            .filter(AvailabilityRules.professional_profile_id == professional_id)
            .order_by(AvailabilityRules.day_of_week, AvailabilityRules.start_time)
            .all()
        )
        return [AvailabilityRule.model_validate(row) for row in rows]

    def list_exceptions(self, clinic_id: str, professional_id: str | None = None) -> list[AvailabilityException]:
        """The professional's own exceptions plus the clinic-wide ones, oldest first."""
        query = self.db.query(AvailabilityExceptions).filter(AvailabilityExceptions.clinic_id == clinic_id)
        if professional_id is not None:
            query = query.filter(or_(
                AvailabilityExceptions.professional_profile_id == professional_id,
                AvailabilityExceptions.is_clinic_wide == 1,
            ))
        rows = query.order_by(AvailabilityExceptions.created_at, AvailabilityExceptions.id).all()
        return [AvailabilityException.model_validate(row) for row in rows]

    def _appointments_query(self, professional_ids: list[str] | None):
        query = self.db.query(Appointments)
        if professional_ids:
            extra = (
                select(t_appointment_professionals.c.appointment_id)
                .where(t_appointment_professionals.c.professional_profile_id.in_(professional_ids))
            )
            query = query.filter(or_(
                Appointments.professional_profile_id.in_(professional_ids),
                Appointments.id.in_(extra),
            ))
        return query

    def list_appointments_between(
        self,
        start: datetime,
        end: datetime,
        professional_ids: list[str] | None = None,
        clinic_id: str | None = None,
    ) -> list[Appointment]:
        """Appointments of the professionals (main or additional) overlapping [start, end)."""
        query = self._appointments_query(professional_ids).filter(
            Appointments.scheduled_at < _iso(end),
            Appointments.end_at > _iso(start),
        )
        if clinic_id is not None:
            query = query.filter(Appointments.clinic_id == clinic_id)
        rows = query.order_by(Appointments.scheduled_at, Appointments.id).all()
        return [self.to_appointment(row) for row in rows]

    def list_appointments_for_day(
        self,
        target_date: date,
        professional_ids: list[str] | None = None,
        clinic_id: str | None = None,
    ) -> list[Appointment]:
        start = datetime.combine(target_date, datetime.min.time())
        query = self._appointments_query(professional_ids).filter(
            Appointments.scheduled_at >= _iso(start),
            Appointments.scheduled_at < _iso(start + timedelta(days=1)),
        )
        if clinic_id is not None:
            query = query.filter(Appointments.clinic_id == clinic_id)
        rows = query.order_by(Appointments.scheduled_at, Appointments.id).all()
        return [self.to_appointment(row) for row in rows]

    def list_series_appointments(self, recurrence_id: str) -> list[Appointment]:
        rows = (
            self.db.query(Appointments)
            .filter(Appointments.recurrence_id == recurrence_id)
            .order_by(Appointments.scheduled_at)
            .all()
        )
        return [self.to_appointment(row) for row in rows]

    def list_biweekly_recurrences(self, professional_ids: list[str] | None = None) -> list[AppointmentRecurrence]:
        query = self.db.query(AppointmentRecurrences).filter(
            AppointmentRecurrences.recurrence_type == "BIWEEKLY",
            AppointmentRecurrences.is_active == 1,
        )
        if professional_ids:
            query = query.filter(AppointmentRecurrences.professional_profile_id.in_(professional_ids))
        return [self.to_recurrence(row) for row in query.all()]

    def list_indefinite_recurrences(self) -> list[AppointmentRecurrence]:
        rows = (
            self.db.query(AppointmentRecurrences)
            .filter(
                AppointmentRecurrences.recurrence_end_type == "INDEFINITE",
                AppointmentRecurrences.is_active == 1,
            )
            .all()
        )
        return [self.to_recurrence(row) for row in rows]

    def group_names(self, group_ids: set[str]) -> dict[str, str]:
        if not group_ids:
            return {}
        rows = self.db.query(TherapyGroups).filter(TherapyGroups.id.in_(group_ids)).all()
        return {row.id: row.name for row in rows}

    # ── Write ────────────────────────────────────────────────────────────

    def add_appointment(self, apt: Appointment, clinic_id: str, patient_id: str | None = None) -> Appointments:
        row = Appointments(
            id=apt.id,
            clinic_id=clinic_id,
            professional_profile_id=apt.professional_profile_id,
            patient_id=patient_id or (apt.patient.id if apt.patient else None),
            recurrence_id=apt.recurrence_id,
            group_id=apt.group_id,
            scheduled_at=_iso(apt.scheduled_at),
            end_at=_iso(apt.end_at),
            status=_enum_value(apt.status),
            type=_enum_value(apt.type),
            blocks_time=int(apt.blocks_time),
            modality=_enum_value(apt.modality),
            title=apt.title,
            notes=apt.notes,
            price=apt.price,
        )
        self.db.add(row)
        self.db.flush()
        self._set_additional_professionals(
            t_appointment_professionals, "appointment_id", row, apt.additional_professional_ids,
        )
        return row

    def save_appointment(self, apt: Appointment) -> None:
        """Write the mutable fields of apt back to its row."""
        row = self.get_appointment_row(apt.id)
        row.scheduled_at = _iso(apt.scheduled_at)
        row.end_at = _iso(apt.end_at)
        row.status = _enum_value(apt.status)
        row.modality = _enum_value(apt.modality)
        row.notes = apt.notes
        row.price = apt.price
        row.cancellation_reason = apt.cancellation_reason
        row.cancelled_at = _iso(apt.cancelled_at)
        row.confirmed_at = _iso(apt.confirmed_at)
        self._set_additional_professionals(
            t_appointment_professionals, "appointment_id", row, apt.additional_professional_ids,
        )

    def delete_appointments(self, appointment_ids: list[str]) -> int:
        if not appointment_ids:
            return 0
        self.db.execute(
            t_appointment_professionals.delete()
            .where(t_appointment_professionals.c.appointment_id.in_(appointment_ids))
        )
        return (
            self.db.query(Appointments)
            .filter(Appointments.id.in_(appointment_ids))
            .delete(synchronize_session=False)
        )

    def add_recurrence(self, rec: AppointmentRecurrence, clinic_id: str) -> AppointmentRecurrences:
        row = AppointmentRecurrences(id=rec.id, clinic_id=clinic_id)
        self._fill_recurrence(row, rec)
        self.db.add(row)
        self.db.flush()
        self._set_additional_professionals(
            t_recurrence_professionals, "recurrence_id", row, rec.additional_professional_ids,
        )
        return row

    def save_recurrence(self, rec: AppointmentRecurrence) -> None:
        row = self.get_recurrence_row(rec.id)
        self._fill_recurrence(row, rec)
        self._set_additional_professionals(
            t_recurrence_professionals, "recurrence_id", row, rec.additional_professional_ids,
        )

    def _fill_recurrence(self, row: AppointmentRecurrences, rec: AppointmentRecurrence) -> None:
        row.professional_profile_id = rec.professional_profile_id
        row.patient_id = rec.patient_id
        row.recurrence_type = _enum_value(rec.recurrence_type)
        row.recurrence_end_type = _enum_value(rec.recurrence_end_type)
        row.day_of_week = rec.day_of_week
        row.start_time = rec.start_time
        row.end_time = rec.end_time
        row.duration = rec.duration
        row.start_date = _iso(rec.start_date)
        row.end_date = _iso(rec.end_date)
        row.occurrences = rec.occurrences
        row.last_generated_date = _iso(rec.last_generated_date)
        row.modality = _enum_value(rec.modality)
        row.is_active = int(rec.is_active)
        row.exceptions = json.dumps(sorted(rec.exceptions))

    def _set_additional_professionals(self, table, key: str, row, professional_ids: list[str]) -> None:
        self.db.flush()
        self.db.execute(table.delete().where(table.c[key] == row.id))
        for professional_id in dict.fromkeys(professional_ids):
            self.db.execute(table.insert().values({key: row.id, "professional_profile_id": professional_id}))
        self.db.expire(row, ["additional_professionals"])

    def mark_last_visit(self, patient_id: str, visited_at: datetime) -> None:
        patient = self.get_patient(patient_id)
        patient.last_visit_at = _iso(visited_at)

    def audit(self, event_type: str, entity_type: str, entity_id: str, payload: dict | None = None) -> None:
        self.db.add(AuditLog(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=json.dumps(payload or {}, default=str),
        ))


def default_blocks_time(appointment_type) -> bool:
    """LEMBRETE and NOTA never consume a slot."""
    return appointment_type not in NON_BLOCKING_TYPES
