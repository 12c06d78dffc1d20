import json
from datetime import date, datetime
from unittest.mock import patch

import pytest

from agenda.models.generated import Appointments, AppointmentRecurrences, AuditLog, AvailabilityRules
from agenda.schemas.appointments import (
    AppointmentCreate,
    AppointmentStatus,
    AppointmentType,
    CancelRequest,
    RecurrenceEndType,
    RecurrenceOptions,
    RecurrenceType,
    StatusUpdate,
)
from agenda.schemas.recurrences import ExceptionToggleRequest, FinalizeRequest, RecurrencePatch
from agenda.services import agenda
from agenda.services.recurrence_extender import run_extension
from agenda.services.repository import AgendaRepository
from agenda.services.scheduling import ConflictError, NotFoundError, ValidationError

NOW = datetime(2026, 3, 1, 12, 0)


def weekly_request(clinic, **kwargs) -> AppointmentCreate:
    data = dict(
        professional_profile_id=clinic.professional_id,
        patient_id=clinic.patient_id,
        date="06/03/2026",
        start_time="10:00",
        recurrence=RecurrenceOptions(
            recurrence_type=RecurrenceType.WEEKLY,
            recurrence_end_type=RecurrenceEndType.BY_OCCURRENCES,
            occurrences=4,
        ),
    )
    data.update(kwargs)
    return AppointmentCreate(**data)


def single_request(clinic, **kwargs) -> AppointmentCreate:
    return weekly_request(clinic, recurrence=None, **kwargs)


# ── Creation ─────────────────────────────────────────────────────────────


def test_create_single_uses_professional_duration(db, clinic):
    result = agenda.create_appointment(db, single_request(clinic), clinic.clinic_id, NOW)

    apt = result.appointments[0]
    assert apt.end_at == datetime(2026, 3, 6, 10, 50)
    assert apt.patient.name == "Joao Silva"
    assert result.recurrence is None
    assert db.query(Appointments).count() == 1
    assert db.query(AuditLog).filter(AuditLog.event_type == "APPOINTMENT_CREATED").count() == 1


def test_create_single_conflict(db, clinic):
    agenda.create_appointment(db, single_request(clinic), clinic.clinic_id, NOW)

    with pytest.raises(ConflictError) as exc:
        agenda.create_appointment(
            db, single_request(clinic, patient_id=clinic.other_patient_id, start_time="10:30"), clinic.clinic_id, NOW,
        )

    assert exc.value.conflicts[0].conflicts_with == "Joao Silva"
    assert db.query(Appointments).count() == 1


def test_reminders_do_not_need_a_free_slot(db, clinic):
    agenda.create_appointment(db, single_request(clinic), clinic.clinic_id, NOW)

    result = agenda.create_appointment(
        db,
        single_request(clinic, patient_id=None, type=AppointmentType.LEMBRETE, title="Ligar para o convenio", duration=10),
        clinic.clinic_id,
        NOW,
    )

    assert result.appointments[0].blocks_time is False
    assert db.query(Appointments).count() == 2


@pytest.mark.parametrize("kwargs", [
    dict(patient_id=None),
    dict(patient_id=None, type=AppointmentType.TAREFA),
    dict(duration=10),
    dict(date="31/02/2026"),
])
def test_create_validation(db, clinic, kwargs):
    with pytest.raises(ValidationError):
        agenda.create_appointment(db, single_request(clinic, **kwargs), clinic.clinic_id, NOW)


def test_create_unknown_professional(db, clinic):
    with pytest.raises(NotFoundError):
        agenda.create_appointment(
            db, single_request(clinic, professional_profile_id="nobody"), clinic.clinic_id, NOW,
        )


def test_create_series(db, clinic, redis_mock):
    result = agenda.create_appointment(db, weekly_request(clinic), clinic.clinic_id, NOW)

    assert len(result.appointments) == 4
    assert result.summary == "Semanal - 4 sessoes"
    assert result.recurrence.day_of_week == 5
    assert result.recurrence.end_time == "10:50"
    rows = db.query(Appointments).order_by(Appointments.scheduled_at).all()
    assert [row.scheduled_at[:10] for row in rows] == ["2026-03-06", "2026-03-13", "2026-03-20", "2026-03-27"]
    assert {row.recurrence_id for row in rows} == {result.recurrence.id}

    queue, payload = redis_mock.rpush.call_args.args
    assert queue == "events:agenda"
    assert json.loads(payload)["type"] == "recurrence_created"


def test_series_conflict_creates_nothing(db, clinic):
    agenda.create_appointment(
        db, single_request(clinic, patient_id=clinic.other_patient_id, date="20/03/2026", start_time="10:30"),
        clinic.clinic_id, NOW,
    )

    with pytest.raises(ConflictError) as exc:
        agenda.create_appointment(db, weekly_request(clinic), clinic.clinic_id, NOW)

    assert exc.value.conflicts[0].index == 2
    assert "20/03/2026" in str(exc.value)
    assert db.query(Appointments).count() == 1
    assert db.query(AppointmentRecurrences).count() == 0


def test_indefinite_series_records_horizon(db, clinic):
    request = weekly_request(clinic, recurrence=RecurrenceOptions(
        recurrence_type=RecurrenceType.WEEKLY, recurrence_end_type=RecurrenceEndType.INDEFINITE,
    ))

    result = agenda.create_appointment(db, request, clinic.clinic_id, NOW)

    assert len(result.appointments) == 27
    assert result.recurrence.last_generated_date == date(2026, 9, 4)


# ── Editing ──────────────────────────────────────────────────────────────


@pytest.fixture
def friday_series(db, clinic):
    return agenda.create_appointment(db, weekly_request(clinic), clinic.clinic_id, NOW)


def test_move_series_to_tuesday_conflict_leaves_database_untouched(db, clinic, friday_series):
    agenda.create_appointment(
        db, single_request(clinic, patient_id=clinic.other_patient_id, date="17/03/2026"), clinic.clinic_id, NOW,
    )

    with pytest.raises(ConflictError) as exc:
        agenda.edit_recurrence(db, friday_series.recurrence.id, RecurrencePatch(day_of_week=2), NOW)

    assert [c.date for c in exc.value.conflicts] == ["2026-03-17"]
    repo = AgendaRepository(db)
    assert repo.get_recurrence(friday_series.recurrence.id).day_of_week == 5
    assert [a.scheduled_at.weekday() for a in repo.list_series_appointments(friday_series.recurrence.id)] == [4] * 4


def test_move_series_to_tuesday(db, clinic, friday_series):
    response = agenda.edit_recurrence(db, friday_series.recurrence.id, RecurrencePatch(day_of_week=2), NOW)

    assert response.updated_count == 4
    stored = AgendaRepository(db).list_series_appointments(friday_series.recurrence.id)
    assert [a.scheduled_at.date() for a in stored] == [
        date(2026, 3, 10), date(2026, 3, 17), date(2026, 3, 24), date(2026, 3, 31),
    ]


def test_frequency_change_deletes_off_cadence(db, clinic, friday_series):
    rec_id = friday_series.recurrence.id

    preview = agenda.preview_recurrence_frequency(db, rec_id, RecurrenceType.BIWEEKLY, NOW)
    response = agenda.edit_recurrence(db, rec_id, RecurrencePatch(recurrence_type=RecurrenceType.BIWEEKLY), NOW)

    assert len(preview.removed) == 2
    assert response.removed_count == 2
    assert db.query(Appointments).count() == 2
    assert response.recurrence.recurrence_type == RecurrenceType.BIWEEKLY


def test_edit_single_occurrence(db, clinic, friday_series):
    target = friday_series.appointments[1]

    response = agenda.edit_appointment(db, target.id, RecurrencePatch(start_time="15:00", notes="Online"), NOW)

    assert response.updated_count == 1
    stored = AgendaRepository(db).get_appointment(target.id)
    assert stored.scheduled_at == datetime(2026, 3, 13, 15, 0)
    assert stored.notes == "Online"
    assert AgendaRepository(db).get_recurrence(friday_series.recurrence.id).start_time == "10:00"


def test_skip_and_unskip(db, clinic, friday_series):
    rec_id = friday_series.recurrence.id

    skipped = agenda.toggle_recurrence_exception(db, rec_id, ExceptionToggleRequest(date="2026-03-13", action="skip"), NOW)
    stored = AgendaRepository(db).get_appointment(skipped.affected_appointment_id)
    assert stored.status == AppointmentStatus.CANCELADO_PROFISSIONAL

    again = agenda.toggle_recurrence_exception(db, rec_id, ExceptionToggleRequest(date="2026-03-13", action="skip"), NOW)
    assert again.noop

    agenda.toggle_recurrence_exception(db, rec_id, ExceptionToggleRequest(date="2026-03-13", action="unskip"), NOW)
    assert AgendaRepository(db).get_appointment(stored.id).status == AppointmentStatus.AGENDADO
    assert AgendaRepository(db).get_recurrence(rec_id).exceptions == []


def test_finalize_series(db, clinic, friday_series):
    response = agenda.finalize_series(
        db,
        friday_series.recurrence.id,
        FinalizeRequest(end_date=date(2026, 3, 15), cancel_future_appointments=True),
        NOW,
    )

    assert response.cancelled_count == 2
    stored = AgendaRepository(db).get_recurrence(friday_series.recurrence.id)
    assert stored.recurrence_end_type == RecurrenceEndType.BY_DATE
    assert stored.end_date == date(2026, 3, 15)


# ── Status and cancellation ──────────────────────────────────────────────


def test_finalizing_appointment_updates_last_visit(db, clinic, friday_series):
    target = friday_series.appointments[0]

    updated = agenda.change_status(db, target.id, StatusUpdate(status=AppointmentStatus.FINALIZADO), NOW)

    assert updated.status == AppointmentStatus.FINALIZADO
    assert AgendaRepository(db).get_patient(clinic.patient_id).last_visit_at == "2026-03-06T10:00:00"


def test_cancel_series_deactivates_recurrence_and_notifies(db, clinic, friday_series, redis_mock):
    now = datetime(2026, 3, 10, 8, 0)

    response = agenda.cancel_appointment(
        db,
        friday_series.appointments[1].id,
        CancelRequest(reason="Alta", cancel_type="series", notify_patient=True),
        now,
    )

    assert response.cancelled_ids == [a.id for a in friday_series.appointments[1:]]
    assert response.deactivated_recurrence_id == friday_series.recurrence.id
    assert response.notifications_queued == 1
    repo = AgendaRepository(db)
    assert repo.get_recurrence(friday_series.recurrence.id).is_active is False
    assert repo.get_appointment(friday_series.appointments[0].id).status == AppointmentStatus.AGENDADO
    queue, payload = redis_mock.rpush.call_args.args
    assert queue == "events:notifications"
    assert json.loads(payload)["channel"] == "WHATSAPP"


def test_failed_notification_is_not_counted(db, clinic, friday_series, redis_mock):
    redis_mock.rpush.side_effect = ConnectionError("redis down")

    response = agenda.cancel_appointment(
        db, friday_series.appointments[0].id, CancelRequest(reason="Feriado", notify_patient=True), NOW,
    )

    assert response.notifications_queued == 0
    stored = AgendaRepository(db).get_appointment(friday_series.appointments[0].id)
    assert stored.status == AppointmentStatus.CANCELADO_PROFISSIONAL


# ── Slots ────────────────────────────────────────────────────────────────


def test_day_slots_for_professional(db, clinic, friday_series):
    db.add(AvailabilityRules(professional_profile_id=clinic.professional_id, day_of_week=5, start_time="08:00", end_time="12:00"))
    db.commit()

    response = agenda.get_day_slots(db, date(2026, 3, 6), clinic.clinic_id, clinic.professional_id)
    slots = {slot.time: slot for slot in response.slots}

    assert response.duration_minutes == 50
    assert list(slots) == ["08:00", "08:50", "09:40", "10:00", "10:30"]
    assert slots["10:00"].is_available is False
    assert slots["08:00"].is_available is True


def test_day_slots_grid_without_professional(db, clinic, friday_series):
    response = agenda.get_day_slots(db, date(2026, 3, 6), clinic.clinic_id)

    assert response.professional_profile_id is None
    assert len(response.slots) == 28
    assert {slot.time: slot for slot in response.slots}["10:00"].is_available is False


def test_biweekly_hint_on_off_week(db, clinic):
    db.add(AvailabilityRules(professional_profile_id=clinic.professional_id, day_of_week=5, start_time="10:00", end_time="11:00"))
    db.commit()
    agenda.create_appointment(
        db,
        weekly_request(clinic, recurrence=RecurrenceOptions(
            recurrence_type=RecurrenceType.BIWEEKLY, recurrence_end_type=RecurrenceEndType.BY_OCCURRENCES, occurrences=3,
        )),
        clinic.clinic_id,
        NOW,
    )

    off_week = agenda.get_day_slots(db, date(2026, 3, 13), clinic.clinic_id, clinic.professional_id)

    assert off_week.slots[0].time == "10:00"
    assert off_week.slots[0].biweekly_hint.patient_name == "Joao Silva"


def test_no_biweekly_hint_where_professional_joins_another_booking(db, clinic):
    db.add(AvailabilityRules(professional_profile_id=clinic.professional_id, day_of_week=5, start_time="10:00", end_time="11:00"))
    db.commit()
    agenda.create_appointment(
        db,
        weekly_request(clinic, recurrence=RecurrenceOptions(
            recurrence_type=RecurrenceType.BIWEEKLY, recurrence_end_type=RecurrenceEndType.BY_OCCURRENCES, occurrences=3,
        )),
        clinic.clinic_id,
        NOW,
    )
    agenda.create_appointment(
        db,
        single_request(
            clinic,
            professional_profile_id=clinic.other_professional_id,
            patient_id=clinic.other_patient_id,
            date="13/03/2026",
            additional_professional_ids=[clinic.professional_id],
        ),
        clinic.clinic_id,
        NOW,
    )

    off_week = agenda.get_day_slots(db, date(2026, 3, 13), clinic.clinic_id, clinic.professional_id)

    assert off_week.slots[0].time == "10:00"
    assert off_week.slots[0].is_available is False
    assert off_week.slots[0].biweekly_hint is None


# ── Rolling extension ────────────────────────────────────────────────────


def test_series_switched_to_indefinite_keeps_extending(db, clinic, friday_series):
    rec_id = friday_series.recurrence.id

    agenda.edit_recurrence(db, rec_id, RecurrencePatch(recurrence_end_type=RecurrenceEndType.INDEFINITE), NOW)

    assert AgendaRepository(db).get_recurrence(rec_id).last_generated_date == date(2026, 3, 27)
    assert agenda.extend_indefinite_series(db, datetime(2026, 3, 25)) == 13
    assert AgendaRepository(db).get_recurrence(rec_id).last_generated_date == date(2026, 6, 26)


def test_extend_indefinite_series(db, clinic):
    request = weekly_request(clinic, recurrence=RecurrenceOptions(
        recurrence_type=RecurrenceType.WEEKLY, recurrence_end_type=RecurrenceEndType.INDEFINITE,
    ))
    created = agenda.create_appointment(db, request, clinic.clinic_id, NOW)
    rec_id = created.recurrence.id

    assert agenda.extend_indefinite_series(db, datetime(2026, 3, 10)) == 0

    added = agenda.extend_indefinite_series(db, datetime(2026, 7, 10))

    assert added == 13
    repo = AgendaRepository(db)
    assert repo.get_recurrence(rec_id).last_generated_date == date(2026, 12, 4)
    series = repo.list_series_appointments(rec_id)
    assert len(series) == 40
    assert series[-1].patient.name == "Joao Silva"
    assert agenda.extend_indefinite_series(db, datetime(2026, 7, 10)) == 0


def test_extension_job_opens_and_closes_its_session(db, clinic):
    request = weekly_request(clinic, recurrence=RecurrenceOptions(
        recurrence_type=RecurrenceType.WEEKLY, recurrence_end_type=RecurrenceEndType.INDEFINITE,
    ))
    agenda.create_appointment(db, request, clinic.clinic_id, NOW)

    with patch("agenda.services.recurrence_extender.SessionLocal", return_value=db) as factory:
        assert run_extension(datetime(2026, 7, 10)) == 13

    factory.assert_called_once_with()
