# backend/agenda/services/scheduling/recurrence.py
"""
Recurrence engine.

A series is one AppointmentRecurrence template plus the Appointments it
materialized. The state of a series is implicit in
(is_active, recurrence_end_type, exceptions):

  create ──► active ──► edit "occurrence"   one appointment, template untouched
               │   └──► edit "future"       template + not-yet-occurred appointments
               │   └──► skip / unskip       exceptions + the sentinel cancellation
               └──► finalize ──► BY_DATE (or inactive when immediate)

Every function here is pure: inputs are never mutated, `now` is passed in,
and a multi-appointment change is either fully returned or replaced by the
list of conflicts that prevented it.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from ...schemas.appointments import (
    Appointment,
    AppointmentRecurrence,
    AppointmentStatus,
    AppointmentType,
    RecurrenceEndType,
    RecurrenceType,
)
from ...schemas.recurrences import RecurrenceDescriptor, RecurrencePatch
from .config import AgendaConfig, get_agenda_config
from .errors import Conflict, NotFoundError, ValidationError
from .status import CANCELLABLE_STATUSES, compute_status_update, is_blocking_appointment
from .timeutils import (
    add_months_to_date,
    calculate_end_time,
    day_of_week,
    format_time,
    parse_date,
    parse_time,
    time_str_to_minutes,
    to_date_string,
    to_display_date,
    validate_duration,
)

logger = logging.getLogger(__name__)

SKIP_REASON = "Excecao na recorrencia - data pulada"
FINALIZE_REASON = "Recorrencia finalizada"

INTERVAL_DAYS = {
    RecurrenceType.WEEKLY: 7,
    RecurrenceType.BIWEEKLY: 14,
}

TYPE_LABELS = {
    RecurrenceType.WEEKLY: "Semanal",
    RecurrenceType.BIWEEKLY: "Quinzenal",
    RecurrenceType.MONTHLY: "Mensal",
}


@dataclass(frozen=True)
class RecurrenceDate:
    date: str  # YYYY-MM-DD
    scheduled_at: datetime
    end_at: datetime


@dataclass
class ExpansionResult:
    """Either the dates to materialize or the first colliding occurrence."""
    occurrences: list[RecurrenceDate] = field(default_factory=list)
    conflict_at: int | None = None
    conflicts: list[Conflict] = field(default_factory=list)
    last_generated_date: date | None = None

    @property
    def occurrence_dates(self) -> list[str]:
        return [occ.date for occ in self.occurrences]

    @property
    def ok(self) -> bool:
        return self.conflict_at is None


@dataclass
class ExtensionPlan:
    recurrence_id: str
    occurrences: list[RecurrenceDate]
    skipped_exceptions: list[str]
    skipped_conflicts: list[Conflict]
    last_generated_date: date


@dataclass
class EditResult:
    """
    Outcome of apply_recurrence_edit.

    When conflicts is non-empty nothing else is set: the caller must not
    write anything.
    """
    updated: list[Appointment] = field(default_factory=list)
    removed: list[Appointment] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    recurrence: AppointmentRecurrence | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return not self.conflicts


@dataclass
class ExceptionToggleResult:
    exceptions: list[str]
    affected_appointment_id: str | None = None
    updated: list[Appointment] = field(default_factory=list)
    recurrence: AppointmentRecurrence | None = None
    noop: bool = False
    message: str = ""


@dataclass
class FinalizeResult:
    recurrence: AppointmentRecurrence
    cancelled: list[Appointment] = field(default_factory=list)
    appointments_after_end_date: int = 0
    noop: bool = False
    message: str = ""


# ── Validation ───────────────────────────────────────────────────────────


def validate_recurrence_options(
    recurrence_end_type: RecurrenceEndType,
    start_date: date,
    occurrences: int | None = None,
    end_date: date | None = None,
    config: AgendaConfig | None = None,
) -> None:
    """Raises ValidationError when the end condition does not fit the end type."""
    config = config or get_agenda_config()

    if recurrence_end_type == RecurrenceEndType.BY_OCCURRENCES:
        if not occurrences or occurrences < 1:
            raise ValidationError("Numero de ocorrencias deve ser pelo menos 1")
        if occurrences > config.max_occurrences:
            raise ValidationError(f"Maximo de {config.max_occurrences} ocorrencias permitido")
    elif recurrence_end_type == RecurrenceEndType.BY_DATE:
        if end_date is None:
            raise ValidationError("Data final e obrigatoria para recorrencia por data")
        if end_date < start_date:
            raise ValidationError("Data final nao pode ser anterior a data inicial")


# ── Expansion ────────────────────────────────────────────────────────────


def _occurrence_date(anchor: date, recurrence_type: RecurrenceType, index: int) -> date:
    # Months are always counted from the anchor so Jan 31 → Feb 28 → Mar 31
    if recurrence_type == RecurrenceType.MONTHLY:
        return add_months_to_date(anchor, index)
    return anchor + timedelta(days=index * INTERVAL_DAYS[recurrence_type])


def _make_occurrence(day: date, start_time: str, duration: int) -> RecurrenceDate:
    hour, minute = parse_time(start_time)
    scheduled_at = datetime(day.year, day.month, day.day, hour, minute)
    return RecurrenceDate(
        date=to_date_string(day),
        scheduled_at=scheduled_at,
        end_at=scheduled_at + timedelta(minutes=duration),
    )


def calculate_recurrence_dates(
    start_date: date,
    start_time: str,
    duration: int,
    recurrence_type: RecurrenceType,
    recurrence_end_type: RecurrenceEndType,
    occurrences: int | None = None,
    end_date: date | None = None,
    config: AgendaConfig | None = None,
) -> list[RecurrenceDate]:
    """
    Every occurrence of a series, starting with start_date itself.

    - BY_OCCURRENCES: min(occurrences, max_occurrences) dates
    - BY_DATE: dates up to end_date inclusive
    - INDEFINITE: dates within indefinite_window_months of start_date
    All three are capped at max_occurrences.
    """
    config = config or get_agenda_config()

    limit = config.max_occurrences
    last_day: date | None = None
    if recurrence_end_type == RecurrenceEndType.BY_OCCURRENCES and occurrences:
        limit = min(occurrences, config.max_occurrences)
    elif recurrence_end_type == RecurrenceEndType.BY_DATE and end_date is not None:
        last_day = end_date
    elif recurrence_end_type == RecurrenceEndType.INDEFINITE:
        last_day = add_months_to_date(start_date, config.indefinite_window_months)

    dates = []
    for index in range(limit):
        current = _occurrence_date(start_date, recurrence_type, index)
        if last_day is not None and current > last_day:
            break
        dates.append(_make_occurrence(current, start_time, duration))
    return dates


def calculate_next_window_dates(
    last_generated_date: date,
    start_time: str,
    duration: int,
    recurrence_type: RecurrenceType,
    weekday: int,
    extension_months: int = 3,
) -> list[RecurrenceDate]:
    """Occurrences strictly after last_generated_date, up to extension_months later."""
    window_end = add_months_to_date(last_generated_date, extension_months)
    dates = []
    index = 1
    while True:
        current = _occurrence_date(last_generated_date, recurrence_type, index)
        if current > window_end:
            break
        if recurrence_type == RecurrenceType.MONTHLY or day_of_week(current) == weekday:
            dates.append(_make_occurrence(current, start_time, duration))
        index += 1
    return dates


def find_conflicts(
    candidates: list[tuple[datetime, datetime]],
    existing: list[Appointment],
    exclude_ids: set[str] | frozenset[str] = frozenset(),
    exclude_group_id: str | None = None,
) -> list[Conflict]:
    """
    One Conflict per candidate range that overlaps a blocking appointment.

    Overlap is start1 < end2 and end1 > start2, so back-to-back entries are
    allowed. Members of exclude_group_id share their time on purpose.
    """
    blocking = [
        apt for apt in existing
        if is_blocking_appointment(apt)
        and apt.id not in exclude_ids
        and not (exclude_group_id and apt.group_id == exclude_group_id)
    ]
    conflicts = []
    for index, (start, end) in enumerate(candidates):
        for apt in blocking:
            if start < apt.end_at and end > apt.scheduled_at:
                conflicts.append(Conflict(
                    index=index,
                    date=to_date_string(start),
                    conflicts_with=apt.display_name,
                    appointment_id=apt.id,
                ))
                break
    return conflicts


def expand_recurrence(
    descriptor: RecurrenceDescriptor,
    existing: list[Appointment],
    patient_visit: bool = True,
    config: AgendaConfig | None = None,
) -> ExpansionResult:
    """
    Expand a new series and check it against existing bookings.

    All or nothing: if any occurrence collides, conflict_at holds its index
    and no occurrences are returned.
    """
    config = config or get_agenda_config()
    parse_time(descriptor.start_time)
    validate_duration(descriptor.duration, patient_visit=patient_visit, config=config)
    validate_recurrence_options(
        descriptor.recurrence_end_type,
        descriptor.start_date,
        descriptor.occurrences,
        descriptor.end_date,
        config,
    )

    all_dates = calculate_recurrence_dates(
        descriptor.start_date,
        descriptor.start_time,
        descriptor.duration,
        descriptor.recurrence_type,
        descriptor.recurrence_end_type,
        descriptor.occurrences,
        descriptor.end_date,
        config,
    )
    skipped = set(descriptor.exceptions)
    occurrences = [occ for occ in all_dates if occ.date not in skipped]

    conflicts = find_conflicts([(occ.scheduled_at, occ.end_at) for occ in occurrences], existing)
    if conflicts:
        logger.debug(f"Series expansion blocked at occurrence {conflicts[0].index} ({conflicts[0].date})")
        return ExpansionResult(conflict_at=conflicts[0].index, conflicts=conflicts)

    last_generated = None
    if descriptor.recurrence_end_type == RecurrenceEndType.INDEFINITE and all_dates:
        last_generated = date.fromisoformat(all_dates[-1].date)

    return ExpansionResult(occurrences=occurrences, last_generated_date=last_generated)


def plan_extension(
    recurrence: AppointmentRecurrence,
    existing: list[Appointment],
    now: datetime,
    config: AgendaConfig | None = None,
) -> ExtensionPlan | None:
    """
    Next rolling window of an INDEFINITE series, or None when it is not due.

    Due means active, INDEFINITE and last generated date less than
    extension_threshold_months away from now. Excepted and colliding dates
    are left out; last_generated_date advances either way.
    """
    config = config or get_agenda_config()
    if not recurrence.is_active or recurrence.recurrence_end_type != RecurrenceEndType.INDEFINITE:
        return None
    if recurrence.last_generated_date is None:
        return None
    threshold = add_months_to_date(now.date(), config.extension_threshold_months)
    if recurrence.last_generated_date > threshold:
        return None

    window = calculate_next_window_dates(
        recurrence.last_generated_date,
        recurrence.start_time,
        recurrence.duration,
        recurrence.recurrence_type,
        recurrence.day_of_week,
        config.extension_months,
    )
    if not window:
        return None

    skipped = set(recurrence.exceptions)
    candidates = [occ for occ in window if occ.date not in skipped]
    conflicts = find_conflicts(
        [(occ.scheduled_at, occ.end_at) for occ in candidates],
        [apt for apt in existing if apt.recurrence_id != recurrence.id],
    )
    conflicting = {c.index for c in conflicts}

    return ExtensionPlan(
        recurrence_id=recurrence.id,
        occurrences=[occ for i, occ in enumerate(candidates) if i not in conflicting],
        skipped_exceptions=[occ.date for occ in window if occ.date in skipped],
        skipped_conflicts=conflicts,
        last_generated_date=date.fromisoformat(window[-1].date),
    )


# ── Editing ──────────────────────────────────────────────────────────────


def calculate_day_shifted_dates(
    scheduled_at: datetime,
    end_at: datetime,
    current_weekday: int,
    new_weekday: int,
) -> tuple[datetime, datetime]:
    """
    Move an occurrence forward to new_weekday.

    Every occurrence of a series moves by the same number of days, so
    weekly stays weekly and biweekly keeps its parity. An unchanged weekday
    moves a full week.
    """
    delta = day_shift(current_weekday, new_weekday)
    return scheduled_at + delta, end_at + delta


def day_shift(current_weekday: int, new_weekday: int) -> timedelta:
    """Forward distance from current_weekday to new_weekday, a full week when equal."""
    return timedelta(days=(new_weekday - current_weekday) % 7 or 7)


def _future_occurrences(
    recurrence: AppointmentRecurrence,
    appointments: list[Appointment],
    now: datetime,
) -> list[Appointment]:
    return sorted(
        (
            apt for apt in appointments
            if apt.recurrence_id == recurrence.id
            and apt.scheduled_at >= now
            and apt.status in CANCELLABLE_STATUSES
        ),
        key=lambda apt: apt.scheduled_at,
    )


def _outside_cadence(future: list[Appointment], new_type: RecurrenceType) -> list[Appointment]:
    """Occurrences that do not fit new_type when anchored on the first of them."""
    if not future:
        return []
    anchor = future[0].scheduled_at.date()

    if new_type == RecurrenceType.MONTHLY:
        return [apt for apt in future if apt.scheduled_at.day != anchor.day]

    interval = INTERVAL_DAYS[new_type]
    return [apt for apt in future if (apt.scheduled_at.date() - anchor).days % interval != 0]


def preview_frequency_change(
    recurrence: AppointmentRecurrence,
    new_type: RecurrenceType,
    appointments: list[Appointment],
    now: datetime,
) -> list[Appointment]:
    """Future occurrences a change to new_type would delete. Nothing is committed."""
    if new_type == recurrence.recurrence_type:
        return []
    return _outside_cadence(_future_occurrences(recurrence, appointments, now), new_type)


def _set_time(value: datetime, time_str: str) -> datetime:
    hour, minute = parse_time(time_str)
    return value.replace(hour=hour, minute=minute, second=0, microsecond=0)


def _apply_occurrence_edit(
    patch: RecurrencePatch,
    appointments: list[Appointment],
    existing: list[Appointment],
    target_appointment_id: str | None,
    config: AgendaConfig,
) -> EditResult:
    target = next((apt for apt in appointments if apt.id == target_appointment_id), None)
    if target is None:
        raise NotFoundError("Appointment", str(target_appointment_id))

    day = parse_date(patch.date) if patch.date else target.scheduled_at.date()
    start_time = patch.start_time or format_time(target.scheduled_at)
    if patch.duration is not None:
        duration = patch.duration
    elif patch.end_time:
        duration = time_str_to_minutes(patch.end_time) - time_str_to_minutes(start_time)
    else:
        duration = int((target.end_at - target.scheduled_at).total_seconds() // 60)
    validate_duration(duration, patient_visit=target.type == AppointmentType.CONSULTA, config=config)

    hour, minute = parse_time(start_time)
    scheduled_at = datetime(day.year, day.month, day.day, hour, minute)
    end_at = scheduled_at + timedelta(minutes=duration)

    update: dict = {}
    if scheduled_at != target.scheduled_at or end_at != target.end_at:
        conflicts = find_conflicts(
            [(scheduled_at, end_at)],
            existing,
            exclude_ids={target.id},
            exclude_group_id=target.group_id,
        )
        if conflicts:
            return EditResult(conflicts=conflicts, message="Conflito de horario")
        update["scheduled_at"] = scheduled_at
        update["end_at"] = end_at

    for name in ("modality", "notes", "price"):
        value = getattr(patch, name)
        if value is not None:
            update[name] = value

    if not update:
        return EditResult(message="Nenhuma alteracao")
    return EditResult(updated=[target.model_copy(update=update)], message="Agendamento atualizado")


def _template_update(recurrence: AppointmentRecurrence, patch: RecurrencePatch, config: AgendaConfig) -> dict:
    update: dict = {}

    if patch.recurrence_type is not None and patch.recurrence_type != recurrence.recurrence_type:
        update["recurrence_type"] = patch.recurrence_type
    if patch.day_of_week is not None and patch.day_of_week != recurrence.day_of_week:
        update["day_of_week"] = patch.day_of_week

    start_time = patch.start_time or recurrence.start_time
    if patch.end_time:
        duration = time_str_to_minutes(patch.end_time) - time_str_to_minutes(start_time)
    elif patch.duration is not None:
        duration = patch.duration
    else:
        duration = recurrence.duration
    if patch.start_time or patch.end_time or patch.duration is not None:
        validate_duration(duration, config=config)
        end_time = calculate_end_time(start_time, duration)
        if (start_time, end_time, duration) != (recurrence.start_time, recurrence.end_time, recurrence.duration):
            update.update(start_time=start_time, end_time=end_time, duration=duration)

    if patch.modality is not None and patch.modality != recurrence.modality:
        update["modality"] = patch.modality

    if patch.recurrence_end_type is not None:
        end_type = patch.recurrence_end_type
        end_date = patch.end_date or recurrence.end_date
        occurrences = patch.occurrences or recurrence.occurrences
        validate_recurrence_options(end_type, recurrence.start_date, occurrences, end_date, config)
        update["recurrence_end_type"] = end_type
        if end_type == RecurrenceEndType.BY_DATE:
            update["end_date"] = end_date
        elif end_type == RecurrenceEndType.BY_OCCURRENCES:
            update["occurrences"] = occurrences
        if end_type != RecurrenceEndType.INDEFINITE and recurrence.recurrence_end_type == RecurrenceEndType.INDEFINITE:
            update["last_generated_date"] = None
    else:
        if patch.end_date is not None:
            update["end_date"] = patch.end_date
        if patch.occurrences is not None:
            update["occurrences"] = patch.occurrences

    if patch.additional_professional_ids is not None:
        update["additional_professional_ids"] = [
            pid for pid in patch.additional_professional_ids if pid != recurrence.professional_profile_id
        ]
    return update


def _apply_future_edit(
    recurrence: AppointmentRecurrence,
    patch: RecurrencePatch,
    appointments: list[Appointment],
    existing: list[Appointment],
    now: datetime,
    config: AgendaConfig,
) -> EditResult:
    if not recurrence.is_active:
        raise ValidationError("Recorrencia esta inativa")

    update = _template_update(recurrence, patch, config)
    if not update:
        raise ValidationError("Nenhuma alteracao fornecida")
    new_recurrence = recurrence.model_copy(update=update)

    future = _future_occurrences(recurrence, appointments, now)
    removed = []
    if "recurrence_type" in update:
        removed = _outside_cadence(future, update["recurrence_type"])
    removed_ids = {apt.id for apt in removed}
    remaining = [apt for apt in future if apt.id not in removed_ids]

    day_changed = "day_of_week" in update
    time_changed = "start_time" in update
    moves: list[tuple[Appointment, datetime, datetime]] = []
    if day_changed or time_changed:
        for apt in remaining:
            start, end = apt.scheduled_at, apt.end_at
            if day_changed:
                start, end = calculate_day_shifted_dates(start, end, recurrence.day_of_week, update["day_of_week"])
            if time_changed:
                start = _set_time(start, new_recurrence.start_time)
                end = start + timedelta(minutes=new_recurrence.duration)
            moves.append((apt, start, end))

    if moves:
        series_ids = {apt.id for apt in appointments if apt.recurrence_id == recurrence.id}
        outside = [apt for apt in existing if apt.recurrence_id != recurrence.id]
        conflicts = find_conflicts(
            [(start, end) for _, start, end in moves],
            outside,
            exclude_ids=series_ids,
        )
        if conflicts:
            logger.debug(f"Future edit of recurrence {recurrence.id} blocked by {len(conflicts)} conflict(s)")
            return EditResult(conflicts=conflicts, message="Conflitos de horario encontrados")

    appointment_update: dict = {}
    if "modality" in update:
        appointment_update["modality"] = update["modality"]
    if "additional_professional_ids" in update:
        appointment_update["additional_professional_ids"] = update["additional_professional_ids"]

    new_times = {apt.id: (start, end) for apt, start, end in moves}
    updated = []
    for apt in remaining:
        apt_update = dict(appointment_update)
        if apt.id in new_times:
            apt_update["scheduled_at"], apt_update["end_at"] = new_times[apt.id]
        if apt_update:
            updated.append(apt.model_copy(update=apt_update))

    # The template anchors (biweekly parity, extension window) follow the moved occurrences
    anchors: dict = {}
    if day_changed:
        delta = day_shift(recurrence.day_of_week, update["day_of_week"])
        anchors["start_date"] = recurrence.start_date + delta
        if new_recurrence.last_generated_date is not None:
            anchors["last_generated_date"] = new_recurrence.last_generated_date + delta
    if (
        new_recurrence.recurrence_end_type == RecurrenceEndType.INDEFINITE
        and new_recurrence.last_generated_date is None
    ):
        materialized = [
            new_times.get(apt.id, (apt.scheduled_at,))[0].date()
            for apt in appointments
            if apt.recurrence_id == recurrence.id and apt.id not in removed_ids
        ]
        anchors["last_generated_date"] = max(materialized, default=anchors.get("start_date", recurrence.start_date))
    if anchors:
        new_recurrence = new_recurrence.model_copy(update=anchors)

    message = "Recorrencia atualizada com sucesso"
    if removed:
        message = (
            f"Recorrencia atualizada. {len(removed)} agendamento(s) removido(s) "
            f"para ajustar a nova frequencia."
        )
    return EditResult(updated=updated, removed=removed, recurrence=new_recurrence, message=message)


def apply_recurrence_edit(
    recurrence: AppointmentRecurrence | None,
    patch: RecurrencePatch,
    scope: str,
    appointments: list[Appointment],
    now: datetime,
    existing: list[Appointment] | None = None,
    target_appointment_id: str | None = None,
    config: AgendaConfig | None = None,
) -> EditResult:
    """
    Edit one occurrence or the series from now on.

    Args:
        recurrence: Series template (may be None for scope "occurrence")
        patch: Fields to change; unset fields are kept
        scope: "occurrence" (only target_appointment_id) or "future"
        appointments: Appointments of the series
        now: Occurrences before now are never touched by "future"
        existing: Other bookings of the professionals involved, for conflict checks
        target_appointment_id: Appointment edited when scope is "occurrence"

    Returns:
        EditResult with updated/removed appointments and the new template,
        or only conflicts when any moved occurrence would collide.
    """
    config = config or get_agenda_config()
    existing = existing or []

    if scope == "occurrence":
        return _apply_occurrence_edit(patch, appointments, existing, target_appointment_id, config)
    if scope == "future":
        if recurrence is None:
            raise ValidationError("Agendamento nao pertence a uma recorrencia")
        return _apply_future_edit(recurrence, patch, appointments, existing, now, config)
    raise ValidationError(f"Escopo de edicao invalido: {scope!r}")


# ── Exceptions and finalization ──────────────────────────────────────────


def toggle_exception(
    recurrence: AppointmentRecurrence,
    date_str: str,
    action: str,
    appointments: list[Appointment],
    now: datetime,
) -> ExceptionToggleResult:
    """
    Skip or unskip one date of a series.

    skip: adds the date and cancels that day's occurrence with SKIP_REASON.
    unskip: removes the date and reopens the occurrence only when it still
    carries exactly (CANCELADO_PROFISSIONAL, SKIP_REASON).
    """
    if action not in ("skip", "unskip"):
        raise ValidationError("Acao deve ser 'skip' ou 'unskip'")
    if not recurrence.is_active:
        raise ValidationError("Recorrencia esta inativa")
    day = parse_date(date_str)
    iso = day.isoformat()

    exceptions = set(recurrence.exceptions)
    on_day = [apt for apt in appointments if apt.recurrence_id == recurrence.id and apt.scheduled_at.date() == day]

    if action == "skip":
        if iso in exceptions:
            return ExceptionToggleResult(
                exceptions=sorted(exceptions), noop=True, message="Esta data ja e uma excecao",
            )
        exceptions.add(iso)
        update = {**compute_status_update(AppointmentStatus.CANCELADO_PROFISSIONAL, now), "cancellation_reason": SKIP_REASON}
        updated = [apt.model_copy(update=update) for apt in on_day if apt.status in CANCELLABLE_STATUSES]
        message = f"Data {to_display_date(day)} pulada com sucesso"
    else:
        if iso not in exceptions:
            return ExceptionToggleResult(
                exceptions=sorted(exceptions), noop=True, message="Esta data nao e uma excecao",
            )
        exceptions.discard(iso)
        update = compute_status_update(AppointmentStatus.AGENDADO, now)
        updated = [
            apt.model_copy(update=update) for apt in on_day
            if apt.status == AppointmentStatus.CANCELADO_PROFISSIONAL and apt.cancellation_reason == SKIP_REASON
        ]
        message = f"Data {to_display_date(day)} restaurada com sucesso"

    new_exceptions = sorted(exceptions)
    return ExceptionToggleResult(
        exceptions=new_exceptions,
        affected_appointment_id=updated[0].id if updated else None,
        updated=updated,
        recurrence=recurrence.model_copy(update={"exceptions": new_exceptions}),
        message=message,
    )


def finalize_recurrence(
    recurrence: AppointmentRecurrence,
    end_date: date,
    appointments: list[Appointment],
    now: datetime,
    cancel_future: bool = False,
    immediate: bool = False,
) -> FinalizeResult:
    """
    Stop a series at end_date.

    The template becomes BY_DATE (inactive when immediate) and stops being
    extended. Occurrences after end_date are cancelled only when
    cancel_future is set; otherwise they are left alone and counted.
    """
    if not recurrence.is_active:
        return FinalizeResult(recurrence=recurrence, noop=True, message="Recorrencia ja esta inativa")
    if end_date < now.date():
        raise ValidationError("Data de fim nao pode ser no passado")

    update: dict = {
        "recurrence_end_type": RecurrenceEndType.BY_DATE,
        "end_date": end_date,
        "last_generated_date": None,
    }
    if immediate:
        update["is_active"] = False

    after_end = [
        apt for apt in appointments
        if apt.recurrence_id == recurrence.id
        and apt.scheduled_at.date() > end_date
        and apt.status in CANCELLABLE_STATUSES
    ]
    cancelled = []
    if cancel_future:
        cancel_update = {
            **compute_status_update(AppointmentStatus.CANCELADO_PROFISSIONAL, now),
            "cancellation_reason": FINALIZE_REASON,
        }
        cancelled = [apt.model_copy(update=cancel_update) for apt in after_end]

    message = "Recorrencia finalizada com sucesso"
    if cancelled:
        message += f". {len(cancelled)} agendamento(s) cancelado(s)."
    return FinalizeResult(
        recurrence=recurrence.model_copy(update=update),
        cancelled=cancelled,
        appointments_after_end_date=len(after_end),
        message=message,
    )


def format_recurrence_summary(
    recurrence_type: RecurrenceType,
    recurrence_end_type: RecurrenceEndType,
    occurrences: int | None = None,
    end_date: date | None = None,
) -> str:
    """Labels such as: Semanal - 10 sessoes, Quinzenal - ate 30/06/2026, Mensal - sem data de fim."""
    summary = TYPE_LABELS[recurrence_type]
    if recurrence_end_type == RecurrenceEndType.BY_OCCURRENCES and occurrences:
        summary += f" - {occurrences} sessoes"
    elif recurrence_end_type == RecurrenceEndType.BY_DATE and end_date:
        summary += f" - ate {to_display_date(end_date)}"
    elif recurrence_end_type == RecurrenceEndType.INDEFINITE:
        summary += " - sem data de fim"
    return summary
