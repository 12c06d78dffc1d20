from datetime import date, datetime, timedelta
from itertools import count
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agenda.database import get_db
from agenda.main import app
from agenda.models.generated import Base, Patients, ProfessionalProfiles, TherapyGroups
from agenda.schemas.appointments import (
    Appointment,
    AppointmentRecurrence,
    PatientContact,
    RecurrenceEndType,
    RecurrenceType,
)
from agenda.schemas.availability import AvailabilityException, AvailabilityRule

CLINIC_ID = "clinic-1"
PROFESSIONAL_ID = "prof-1"
OTHER_PROFESSIONAL_ID = "prof-2"

_ids = count(1)


# ── Pure factories ───────────────────────────────────────────────────────


@pytest.fixture
def make_appointment():
    def _make(
        start: datetime,
        minutes: int = 50,
        professional_id: str = PROFESSIONAL_ID,
        patient_name: str | None = "Joao Silva",
        **kwargs,
    ) -> Appointment:
        patient = kwargs.pop("patient", None)
        if patient is None and patient_name is not None:
            patient = PatientContact(id=f"pat-{patient_name}", name=patient_name)
        return Appointment(
            id=kwargs.pop("id", f"apt-{next(_ids)}"),
            professional_profile_id=professional_id,
            scheduled_at=start,
            end_at=start + timedelta(minutes=minutes),
            patient=patient,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_rule():
    def _make(day_of_week: int, start_time: str, end_time: str, **kwargs) -> AvailabilityRule:
        return AvailabilityRule(
            id=f"rule-{next(_ids)}",
            professional_profile_id=kwargs.pop("professional_profile_id", PROFESSIONAL_ID),
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_exception():
    def _make(**kwargs) -> AvailabilityException:
        return AvailabilityException(id=f"exc-{next(_ids)}", **kwargs)
    return _make


@pytest.fixture
def make_recurrence():
    def _make(
        start_date: date,
        start_time: str = "10:00",
        duration: int = 50,
        recurrence_type: RecurrenceType = RecurrenceType.WEEKLY,
        recurrence_end_type: RecurrenceEndType = RecurrenceEndType.BY_OCCURRENCES,
        **kwargs,
    ) -> AppointmentRecurrence:
        hour, minute = (int(part) for part in start_time.split(":"))
        end = datetime(2000, 1, 1, hour, minute) + timedelta(minutes=duration)
        return AppointmentRecurrence(
            id=kwargs.pop("id", f"rec-{next(_ids)}"),
            professional_profile_id=kwargs.pop("professional_profile_id", PROFESSIONAL_ID),
            recurrence_type=recurrence_type,
            recurrence_end_type=recurrence_end_type,
            day_of_week=(start_date.weekday() + 1) % 7,
            start_time=start_time,
            end_time=f"{end.hour:02d}:{end.minute:02d}",
            duration=duration,
            start_date=start_date,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_series(make_appointment):
    """Materialized appointments of a recurrence, one per given date."""
    def _make(recurrence: AppointmentRecurrence, days: list[date], **kwargs) -> list[Appointment]:
        hour, minute = (int(part) for part in recurrence.start_time.split(":"))
        return [
            make_appointment(
                datetime(day.year, day.month, day.day, hour, minute),
                minutes=recurrence.duration,
                professional_id=recurrence.professional_profile_id,
                recurrence_id=recurrence.id,
                **kwargs,
            )
            for day in days
        ]
    return _make


# ── Database / HTTP ──────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def redis_mock():
    """No test talks to a real Redis: the event queue is a MagicMock."""
    fake = MagicMock()
    with patch("agenda.services.events.redis_client", fake):
        yield fake


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def clinic(db):
    """Two professionals, two patients and one therapy group of clinic-1."""
    db.add_all([
        ProfessionalProfiles(id=PROFESSIONAL_ID, clinic_id=CLINIC_ID, name="Dra. Ana", appointment_duration=50),
        ProfessionalProfiles(id=OTHER_PROFESSIONAL_ID, clinic_id=CLINIC_ID, name="Dr. Bruno", appointment_duration=30),
        Patients(
            id="pat-1",
            clinic_id=CLINIC_ID,
            name="Joao Silva",
            phone="+5511999990000",
            email="joao@example.com",
            consent_whatsapp=1,
            consent_email=0,
        ),
        Patients(id="pat-2", clinic_id=CLINIC_ID, name="Maria Souza"),
        TherapyGroups(id="group-1", clinic_id=CLINIC_ID, name="Grupo TCC", professional_profile_id=PROFESSIONAL_ID),
    ])
    db.commit()
    return SimpleNamespace(
        clinic_id=CLINIC_ID,
        professional_id=PROFESSIONAL_ID,
        other_professional_id=OTHER_PROFESSIONAL_ID,
        patient_id="pat-1",
        other_patient_id="pat-2",
        group_id="group-1",
    )


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()

