# backend/agenda/services/agenda.py
"""
Agenda service.

Glue between the HTTP layer and the scheduling core:
1. Load a point-in-time snapshot through AgendaRepository
2. Decide with the pure functions of services.scheduling
3. Write every resulting change inside one unit of work
4. Emit events (after commit)

Errors from the core (ValidationError, ConflictError, NotFoundError)
propagate unchanged; main.py maps them to HTTP responses.
"""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from ..database import unit_of_work
from ..models.generated import new_id
from ..schemas.appointments import (
    Appointment,
    AppointmentCreate,
    AppointmentCreateResult,
    AppointmentRecurrence,
    AppointmentStatus,
    AppointmentType,
    CancelRequest,
    CancelResponse,
    PatientContact,
    RecurrenceEndType,
    RecurrenceType,
    StatusUpdate,
)
from ..schemas.recurrences import (
    ExceptionToggleRequest,
    ExceptionToggleResponse,
    FinalizeRequest,
    FinalizeResponse,
    FrequencyPreviewResponse,
    RecurrenceDescriptor,
    RecurrenceDetail,
    RecurrenceEditResponse,
    RecurrencePatch,
)
from ..schemas.slots import SlotsDayResponse
from .events import emit_event, emit_notifications
from .repository import AgendaRepository, default_blocks_time
from .scheduling import (
    ConflictError,
    ValidationError,
    apply_recurrence_edit,
    build_group_sessions,
    compute_biweekly_hints,
    compute_multi_professional_grid,
    compute_slots_for_day,
    expand_recurrence,
    finalize_recurrence,
    get_agenda_config,
    plan_cancellation,
    plan_extension,
    preview_frequency_change,
    toggle_exception,
    transition_status,
)
from .scheduling.biweekly import build_slot_key
from .scheduling.recurrence import (
    calculate_recurrence_dates,
    find_conflicts,
    format_recurrence_summary,
)
from .scheduling.status import is_cancelled, should_update_last_visit
from .scheduling.timeutils import (
    add_months_to_date,
    calculate_end_time,
    combine_local,
    day_of_week,
    parse_date,
    to_display_date,
    validate_duration,
)

logger = logging.getLogger(__name__)


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


# ── Slots ────────────────────────────────────────────────────────────────


def get_day_slots(
    db: Session,
    target_date: date,
    clinic_id: str,
    professional_id: str | None = None,
) -> SlotsDayResponse:
    """
    Slots of one professional, or the all-professionals grid when
    professional_id is None.
    """
    repo = AgendaRepository(db)

    if professional_id is None:
        appointments = repo.list_appointments_for_day(target_date, clinic_id=clinic_id)
        group_ids = {apt.group_id for apt in appointments if apt.group_id}
        sessions = build_group_sessions(appointments, repo.group_names(group_ids))
        return SlotsDayResponse(
            date=target_date,
            slots=compute_multi_professional_grid(target_date, appointments, sessions),
        )

    professional = repo.get_professional(professional_id)
    duration = professional.appointment_duration or get_agenda_config().default_appointment_duration

    appointments = repo.list_appointments_for_day(target_date, [professional_id])
    group_ids = {apt.group_id for apt in appointments if apt.group_id}
    sessions = build_group_sessions(appointments, repo.group_names(group_ids))

    # Keyed by the queried professional: additional-professional bookings occupy the slot too
    occupied = {
        build_slot_key(apt.scheduled_at, professional_id)
        for apt in appointments
        if not is_cancelled(apt.status)
    }
    hints = compute_biweekly_hints(
        target_date,
        target_date,
        repo.list_biweekly_recurrences([professional_id]),
        occupied,
    )

    day = compute_slots_for_day(
        target_date,
        repo.list_rules(professional_id),
        repo.list_exceptions(clinic_id, professional_id),
        appointments,
        group_sessions=sessions,
        biweekly_hints=hints,
        duration_minutes=duration,
        professional_id=professional_id,
    )
    return SlotsDayResponse(
        date=target_date,
        professional_profile_id=professional_id,
        duration_minutes=duration,
        slots=day.slots,
        full_day_block=day.full_day_block,
    )


# ── Appointments ─────────────────────────────────────────────────────────


def create_appointment(
    db: Session,
    data: AppointmentCreate,
    clinic_id: str,
    now: datetime,
) -> AppointmentCreateResult:
    """
    Create a single appointment or a whole series.

    A series is all-or-nothing: one colliding occurrence rejects every one.
    """
    repo = AgendaRepository(db)
    config = get_agenda_config()

    professional = repo.get_professional(data.professional_profile_id)
    patient = repo.get_patient(data.patient_id) if data.patient_id else None
    patient_visit = data.type == AppointmentType.CONSULTA
    if patient_visit and patient is None:
        raise ValidationError("Paciente e obrigatorio para consultas")
    if not patient_visit and not (data.title and data.title.strip()):
        raise ValidationError("Titulo e obrigatorio")

    duration = data.duration or professional.appointment_duration or config.default_appointment_duration
    validate_duration(duration, patient_visit=patient_visit, config=config)

    start_day = parse_date(data.date)
    scheduled_at = combine_local(data.date, data.start_time)
    end_at = scheduled_at + timedelta(minutes=duration)
    blocks_time = default_blocks_time(data.type)

    additional = [pid for pid in dict.fromkeys(data.additional_professional_ids) if pid != professional.id]
    for pid in additional:
        repo.get_professional(pid)
    professional_ids = [professional.id, *additional]

    base = Appointment(
        id=new_id(),
        professional_profile_id=professional.id,
        scheduled_at=scheduled_at,
        end_at=end_at,
        type=data.type,
        blocks_time=blocks_time,
        modality=data.modality if patient_visit else None,
        group_id=data.group_id,
        additional_professional_ids=additional,
        patient=PatientContact.model_validate(patient) if patient is not None else None,
        title=data.title,
        notes=data.notes,
    )

    if data.recurrence is None:
        if blocks_time:
            existing = repo.list_appointments_between(scheduled_at, end_at, professional_ids)
            conflicts = find_conflicts([(scheduled_at, end_at)], existing, exclude_group_id=data.group_id)
            if conflicts:
                raise ConflictError(conflicts, f"Conflito de horario com {conflicts[0].conflicts_with}")
        with unit_of_work(db):
            repo.add_appointment(base, clinic_id)
            repo.audit("APPOINTMENT_CREATED", "Appointment", base.id, {"scheduled_at": scheduled_at})
        logger.info(f"Appointment {base.id} created for professional={professional.id} at {scheduled_at.isoformat()}")
        return AppointmentCreateResult(appointments=[base])

    options = data.recurrence
    descriptor = RecurrenceDescriptor(
        recurrence_type=options.recurrence_type,
        recurrence_end_type=options.recurrence_end_type,
        start_date=start_day,
        start_time=data.start_time,
        duration=duration,
        occurrences=options.occurrences,
        end_date=options.end_date,
    )

    existing: list[Appointment] = []
    if blocks_time:
        planned = calculate_recurrence_dates(
            start_day,
            data.start_time,
            duration,
            options.recurrence_type,
            options.recurrence_end_type,
            options.occurrences,
            options.end_date,
            config,
        )
        if planned:
            existing = [
                apt for apt in repo.list_appointments_between(planned[0].scheduled_at, planned[-1].end_at, professional_ids)
                if not (data.group_id and apt.group_id == data.group_id)
            ]

    result = expand_recurrence(descriptor, existing, patient_visit=patient_visit, config=config)
    if not result.ok:
        first = result.conflicts[0]
        raise ConflictError(
            result.conflicts,
            f"Conflito na ocorrencia {first.index + 1} ({to_display_date(first.date)})"
            f" com {first.conflicts_with}",
        )

    end_type = options.recurrence_end_type
    recurrence = AppointmentRecurrence(
        id=new_id(),
        professional_profile_id=professional.id,
        patient_id=patient.id if patient is not None else None,
        patient_name=patient.name if patient is not None else None,
        recurrence_type=options.recurrence_type,
        recurrence_end_type=end_type,
        day_of_week=day_of_week(start_day),
        start_time=data.start_time,
        end_time=calculate_end_time(data.start_time, duration),
        duration=duration,
        start_date=start_day,
        end_date=options.end_date if end_type == RecurrenceEndType.BY_DATE else None,
        occurrences=options.occurrences if end_type == RecurrenceEndType.BY_OCCURRENCES else None,
        last_generated_date=result.last_generated_date,
        modality=base.modality,
        additional_professional_ids=additional,
    )
    appointments = [
        base.model_copy(update={
            "id": new_id(),
            "scheduled_at": occ.scheduled_at,
            "end_at": occ.end_at,
            "recurrence_id": recurrence.id,
        })
        for occ in result.occurrences
    ]

    with unit_of_work(db):
        repo.add_recurrence(recurrence, clinic_id)
        for apt in appointments:
            repo.add_appointment(apt, clinic_id)
        repo.audit("RECURRENCE_CREATED", "AppointmentRecurrence", recurrence.id, {
            "occurrences": len(appointments),
            "recurrence_type": recurrence.recurrence_type.value,
            "recurrence_end_type": end_type.value,
        })

    logger.info(
        f"Recurrence {recurrence.id} created: {recurrence.recurrence_type.value} "
        f"{len(appointments)} occurrence(s) from {start_day.isoformat()}"
    )
    emit_event("recurrence_created", {"recurrence_id": recurrence.id, "occurrences": len(appointments)})

    return AppointmentCreateResult(
        appointments=appointments,
        recurrence=recurrence,
        summary=format_recurrence_summary(
            recurrence.recurrence_type, end_type, recurrence.occurrences, recurrence.end_date,
        ),
    )


def edit_appointment(
    db: Session,
    appointment_id: str,
    patch: RecurrencePatch,
    now: datetime,
) -> RecurrenceEditResponse:
    """Edit this occurrence only; its series template is never touched."""
    repo = AgendaRepository(db)
    apt = repo.get_appointment(appointment_id)

    day = parse_date(patch.date) if patch.date else apt.scheduled_at.date()
    start, end = _day_bounds(day)
    existing = repo.list_appointments_between(
        start, end + timedelta(days=1), [apt.professional_profile_id, *apt.additional_professional_ids],
    )

    result = apply_recurrence_edit(None, patch, "occurrence", [apt], now, existing, apt.id)
    if not result.ok:
        raise ConflictError(result.conflicts, f"Conflito de horario com {result.conflicts[0].conflicts_with}")

    if result.updated:
        with unit_of_work(db):
            for updated in result.updated:
                repo.save_appointment(updated)
            repo.audit("APPOINTMENT_UPDATED", "Appointment", apt.id, patch.model_dump(exclude_none=True))
        logger.info(f"Appointment {apt.id} updated (this occurrence only)")

    return RecurrenceEditResponse(
        message=result.message,
        updated_count=len(result.updated),
        removed_count=0,
        appointments=result.updated,
    )


def change_status(db: Session, appointment_id: str, data: StatusUpdate, now: datetime) -> Appointment:
    repo = AgendaRepository(db)
    apt = repo.get_appointment(appointment_id)
    updated = transition_status(apt, data.status, now, admin_override=data.admin_override)

    with unit_of_work(db):
        repo.save_appointment(updated)
        if should_update_last_visit(data.status) and apt.patient is not None:
            repo.mark_last_visit(apt.patient.id, apt.scheduled_at)
        repo.audit("APPOINTMENT_STATUS_CHANGED", "Appointment", apt.id, {
            "from": apt.status.value,
            "to": data.status.value,
            "admin_override": data.admin_override,
        })

    logger.info(f"Appointment {apt.id} status {apt.status.value} → {data.status.value}")
    return updated


def cancel_appointment(db: Session, appointment_id: str, data: CancelRequest, now: datetime) -> CancelResponse:
    repo = AgendaRepository(db)
    apt = repo.get_appointment(appointment_id)

    series = None
    if data.cancel_type == "series" and apt.recurrence_id:
        series = repo.list_series_appointments(apt.recurrence_id)

    plan = plan_cancellation(
        apt,
        data.reason,
        now,
        cancel_type=data.cancel_type,
        status=data.status,
        notify_patient=data.notify_patient,
        series_appointments=series,
    )

    with unit_of_work(db):
        for cancelled in plan.cancelled:
            repo.save_appointment(cancelled)
        if plan.deactivate_recurrence_id:
            recurrence = repo.get_recurrence(plan.deactivate_recurrence_id)
            repo.save_recurrence(recurrence.model_copy(update={"is_active": False}))
        repo.audit("APPOINTMENT_CANCELLED", "Appointment", apt.id, {
            "cancel_type": plan.cancel_type,
            "status": plan.status.value,
            "reason": plan.reason,
            "cancelled_ids": plan.cancelled_ids,
        })

    logger.info(f"Appointment {apt.id} cancelled ({plan.cancel_type}): {len(plan.cancelled)} appointment(s)")
    queued = emit_notifications(plan.notifications)

    return CancelResponse(
        cancel_type=plan.cancel_type,
        status=plan.status,
        cancelled_ids=plan.cancelled_ids,
        deactivated_recurrence_id=plan.deactivate_recurrence_id,
        notifications_queued=queued,
    )


# ── Recurrences ──────────────────────────────────────────────────────────


def get_recurrence_detail(db: Session, recurrence_id: str, now: datetime) -> RecurrenceDetail:
    repo = AgendaRepository(db)
    recurrence = repo.get_recurrence(recurrence_id)
    future = [
        apt for apt in repo.list_series_appointments(recurrence_id)
        if apt.scheduled_at >= now and apt.status in (AppointmentStatus.AGENDADO, AppointmentStatus.CONFIRMADO)
    ]
    return RecurrenceDetail(
        recurrence=recurrence,
        summary=format_recurrence_summary(
            recurrence.recurrence_type,
            recurrence.recurrence_end_type,
            recurrence.occurrences,
            recurrence.end_date,
        ),
        future_appointments=future,
    )


def edit_recurrence(db: Session, recurrence_id: str, patch: RecurrencePatch, now: datetime) -> RecurrenceEditResponse:
    """Apply a template change to the series and its not-yet-occurred appointments."""
    repo = AgendaRepository(db)
    recurrence = repo.get_recurrence(recurrence_id)
    series = repo.list_series_appointments(recurrence_id)

    future = [apt for apt in series if apt.scheduled_at >= now]
    existing: list[Appointment] = []
    if future:
        additional = (
            patch.additional_professional_ids
            if patch.additional_professional_ids is not None
            else recurrence.additional_professional_ids
        )
        start, _ = _day_bounds(future[0].scheduled_at.date())
        # Day shifts move forward by at most a week
        existing = repo.list_appointments_between(
            start,
            future[-1].end_at + timedelta(days=8),
            [recurrence.professional_profile_id, *additional],
        )

    result = apply_recurrence_edit(recurrence, patch, "future", series, now, existing)
    if not result.ok:
        raise ConflictError(result.conflicts, "Conflitos de horario encontrados ao alterar a recorrencia")

    with unit_of_work(db):
        repo.save_recurrence(result.recurrence)
        repo.delete_appointments([apt.id for apt in result.removed])
        for updated in result.updated:
            repo.save_appointment(updated)
        repo.audit("RECURRENCE_UPDATED", "AppointmentRecurrence", recurrence_id, {
            **patch.model_dump(exclude_none=True),
            "updated_count": len(result.updated),
            "removed_count": len(result.removed),
        })

    logger.info(
        f"Recurrence {recurrence_id} updated: {len(result.updated)} appointment(s) changed, "
        f"{len(result.removed)} removed"
    )
    emit_event("recurrence_updated", {"recurrence_id": recurrence_id})

    return RecurrenceEditResponse(
        message=result.message,
        updated_count=len(result.updated),
        removed_count=len(result.removed),
        recurrence=result.recurrence,
        appointments=result.updated,
    )


def preview_recurrence_frequency(
    db: Session,
    recurrence_id: str,
    recurrence_type: RecurrenceType,
    now: datetime,
) -> FrequencyPreviewResponse:
    repo = AgendaRepository(db)
    recurrence = repo.get_recurrence(recurrence_id)
    removed = preview_frequency_change(
        recurrence, recurrence_type, repo.list_series_appointments(recurrence_id), now,
    )
    return FrequencyPreviewResponse(recurrence_type=recurrence_type, removed=removed)


def toggle_recurrence_exception(
    db: Session,
    recurrence_id: str,
    data: ExceptionToggleRequest,
    now: datetime,
) -> ExceptionToggleResponse:
    repo = AgendaRepository(db)
    recurrence = repo.get_recurrence(recurrence_id)
    result = toggle_exception(recurrence, data.date, data.action, repo.list_series_appointments(recurrence_id), now)

    if not result.noop:
        with unit_of_work(db):
            repo.save_recurrence(result.recurrence)
            for updated in result.updated:
                repo.save_appointment(updated)
            repo.audit(
                "RECURRENCE_EXCEPTION_ADDED" if data.action == "skip" else "RECURRENCE_EXCEPTION_REMOVED",
                "AppointmentRecurrence",
                recurrence_id,
                {"date": data.date, "exceptions": result.exceptions},
            )
        logger.info(f"Recurrence {recurrence_id}: {data.action} {data.date}")

    return ExceptionToggleResponse(
        exceptions=result.exceptions,
        affected_appointment_id=result.affected_appointment_id,
        noop=result.noop,
        message=result.message,
    )


def finalize_series(db: Session, recurrence_id: str, data: FinalizeRequest, now: datetime) -> FinalizeResponse:
    repo = AgendaRepository(db)
    recurrence = repo.get_recurrence(recurrence_id)
    result = finalize_recurrence(
        recurrence,
        data.end_date,
        repo.list_series_appointments(recurrence_id),
        now,
        cancel_future=data.cancel_future_appointments,
        immediate=data.immediate,
    )

    if not result.noop:
        with unit_of_work(db):
            repo.save_recurrence(result.recurrence)
            for cancelled in result.cancelled:
                repo.save_appointment(cancelled)
            repo.audit("RECURRENCE_FINALIZED", "AppointmentRecurrence", recurrence_id, {
                "end_date": data.end_date,
                "immediate": data.immediate,
                "cancelled_count": len(result.cancelled),
            })
        logger.info(f"Recurrence {recurrence_id} finalized at {data.end_date.isoformat()}")
        emit_event("recurrence_finalized", {"recurrence_id": recurrence_id})

    return FinalizeResponse(
        recurrence=result.recurrence,
        cancelled_count=len(result.cancelled),
        appointments_after_end_date=result.appointments_after_end_date,
        noop=result.noop,
        message=result.message,
    )


# ── Rolling generation ───────────────────────────────────────────────────


def extend_indefinite_series(db: Session, now: datetime) -> int:
    """
    Materialize the next window of every INDEFINITE series that is due.

    Returns the number of appointments created.
    """
    repo = AgendaRepository(db)
    config = get_agenda_config()
    created = 0

    for recurrence in repo.list_indefinite_recurrences():
        if recurrence.last_generated_date is None:
            continue
        window_start = datetime.combine(recurrence.last_generated_date, time.min)
        window_end = datetime.combine(
            add_months_to_date(recurrence.last_generated_date, config.extension_months), time.max,
        )
        existing = repo.list_appointments_between(
            window_start,
            window_end,
            [recurrence.professional_profile_id, *recurrence.additional_professional_ids],
        )
        plan = plan_extension(recurrence, existing, now, config)
        if plan is None:
            continue

        row = repo.get_recurrence_row(recurrence.id)
        series = repo.list_series_appointments(recurrence.id)
        template = series[-1] if series else _template_appointment(repo, recurrence)
        new_appointments = [
            template.model_copy(update={
                "id": new_id(),
                "scheduled_at": occ.scheduled_at,
                "end_at": occ.end_at,
                "recurrence_id": recurrence.id,
                "status": AppointmentStatus.AGENDADO,
                "modality": recurrence.modality,
                "additional_professional_ids": recurrence.additional_professional_ids,
                "cancellation_reason": None,
                "cancelled_at": None,
                "confirmed_at": None,
            })
            for occ in plan.occurrences
        ]

        with unit_of_work(db):
            for apt in new_appointments:
                repo.add_appointment(apt, row.clinic_id)
            repo.save_recurrence(recurrence.model_copy(update={"last_generated_date": plan.last_generated_date}))
            repo.audit("RECURRENCE_EXTENDED", "AppointmentRecurrence", recurrence.id, {
                "created": len(new_appointments),
                "skipped_exceptions": plan.skipped_exceptions,
                "skipped_conflicts": [c.date for c in plan.skipped_conflicts],
                "last_generated_date": plan.last_generated_date,
            })

        if plan.skipped_conflicts:
            logger.warning(
                f"Recurrence {recurrence.id}: {len(plan.skipped_conflicts)} date(s) skipped due to conflicts"
            )
        logger.info(
            f"Recurrence {recurrence.id} extended with {len(new_appointments)} appointment(s) "
            f"until {plan.last_generated_date.isoformat()}"
        )
        created += len(new_appointments)

    return created


def _template_appointment(repo: AgendaRepository, recurrence: AppointmentRecurrence) -> Appointment:
    """Stand-in for the series' first appointment when none is left to copy."""
    patient = repo.get_patient(recurrence.patient_id) if recurrence.patient_id else None
    placeholder = datetime.combine(recurrence.start_date, time.min)
    return Appointment(
        id="",
        professional_profile_id=recurrence.professional_profile_id,
        scheduled_at=placeholder,
        end_at=placeholder,
        type=AppointmentType.CONSULTA if patient is not None else AppointmentType.TAREFA,
        patient=PatientContact.model_validate(patient) if patient is not None else None,
        title=None if patient is not None else "Recorrencia",
    )
