# backend/agenda/services/scheduling/status.py
"""
Appointment status workflow and cancellation policy.

  AGENDADO ──► CONFIRMADO ──► FINALIZADO (terminal)
      │             │
      └─────────────┴──► CANCELADO_ACORDADO   credit for the patient
                         CANCELADO_FALTA      no-show, billed normally
                         CANCELADO_PROFISSIONAL  not billed

A cancelled appointment goes back to AGENDADO only through the recurrence
unskip path or an explicit administrative override.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import NoReturn

from ...schemas.appointments import Appointment, AppointmentStatus, AppointmentType
from .errors import InvalidTransitionError, ValidationError

logger = logging.getLogger(__name__)

S = AppointmentStatus

CANCELLED_STATUSES = frozenset({S.CANCELADO_ACORDADO, S.CANCELADO_FALTA, S.CANCELADO_PROFISSIONAL})
CANCELLABLE_STATUSES = frozenset({S.AGENDADO, S.CONFIRMADO})

VALID_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.AGENDADO: frozenset({S.CONFIRMADO, S.FINALIZADO, *CANCELLED_STATUSES}),
    S.CONFIRMADO: frozenset({S.FINALIZADO, *CANCELLED_STATUSES}),
    S.FINALIZADO: frozenset(),
    S.CANCELADO_ACORDADO: frozenset(),
    S.CANCELADO_FALTA: frozenset(),
    S.CANCELADO_PROFISSIONAL: frozenset(),
}

# Only reachable with admin_override=True
OVERRIDE_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    status: frozenset({S.AGENDADO, *(CANCELLED_STATUSES - {status})})
    for status in CANCELLED_STATUSES
}

STATUS_LABELS = {
    S.AGENDADO: "Agendado",
    S.CONFIRMADO: "Confirmado",
    S.FINALIZADO: "Finalizado",
    S.CANCELADO_ACORDADO: "Desmarcou",
    S.CANCELADO_FALTA: "Cancelado (Falta)",
    S.CANCELADO_PROFISSIONAL: "Cancelado (sem cobranca)",
}


class BillingEffect(str, Enum):
    PENDING = "PENDING"
    BILLED = "BILLED"
    CREDIT = "CREDIT"
    NOT_BILLED = "NOT_BILLED"


class NotificationChannel(str, Enum):
    WHATSAPP = "WHATSAPP"
    EMAIL = "EMAIL"


def _unhandled(status: object) -> NoReturn:
    raise ValueError(f"Unhandled appointment status: {status!r}")


def is_cancelled(status: AppointmentStatus) -> bool:
    match status:
        case S.CANCELADO_ACORDADO | S.CANCELADO_FALTA | S.CANCELADO_PROFISSIONAL:
            return True
        case S.AGENDADO | S.CONFIRMADO | S.FINALIZADO:
            return False
        case _:
            _unhandled(status)


def is_terminal(status: AppointmentStatus) -> bool:
    """FINALIZADO and every cancellation end the normal workflow."""
    match status:
        case S.FINALIZADO:
            return True
        case S.AGENDADO | S.CONFIRMADO:
            return False
        case _:
            return is_cancelled(status)


def billing_effect(status: AppointmentStatus) -> BillingEffect:
    match status:
        case S.AGENDADO | S.CONFIRMADO:
            return BillingEffect.PENDING
        case S.FINALIZADO | S.CANCELADO_FALTA:
            return BillingEffect.BILLED
        case S.CANCELADO_ACORDADO:
            return BillingEffect.CREDIT
        case S.CANCELADO_PROFISSIONAL:
            return BillingEffect.NOT_BILLED
        case _:
            _unhandled(status)


def is_blocking_appointment(appointment: Appointment) -> bool:
    """Only time-blocking, non-cancelled entries occupy a slot."""
    return appointment.blocks_time and not is_cancelled(appointment.status)


def is_valid_transition(
    from_status: AppointmentStatus,
    to_status: AppointmentStatus,
    admin_override: bool = False,
) -> bool:
    if to_status in VALID_TRANSITIONS[from_status]:
        return True
    return admin_override and to_status in OVERRIDE_TRANSITIONS.get(from_status, frozenset())


def compute_status_update(target_status: AppointmentStatus, now: datetime) -> dict:
    """Fields to write when moving an appointment to target_status."""
    data: dict = {"status": target_status}
    if target_status == S.CONFIRMADO:
        data["confirmed_at"] = now
    elif is_cancelled(target_status):
        data["cancelled_at"] = now
    elif target_status == S.AGENDADO:
        data["confirmed_at"] = None
        data["cancelled_at"] = None
        data["cancellation_reason"] = None
    return data


def transition_status(
    appointment: Appointment,
    target_status: AppointmentStatus,
    now: datetime,
    admin_override: bool = False,
    reason: str | None = None,
) -> Appointment:
    """Return a copy of appointment in target_status. Raises InvalidTransitionError."""
    if not is_valid_transition(appointment.status, target_status, admin_override):
        raise InvalidTransitionError(appointment.status, target_status)
    update = compute_status_update(target_status, now)
    if reason is not None and is_cancelled(target_status):
        update["cancellation_reason"] = reason
    return appointment.model_copy(update=update)


def should_update_last_visit(target_status: AppointmentStatus) -> bool:
    return target_status == S.FINALIZADO


# ── Predicates used by the UI layer ──────────────────────────────────────


def can_cancel(appointment: Appointment | None) -> bool:
    return appointment is not None and appointment.status in CANCELLABLE_STATUSES


def can_mark_status(appointment: Appointment | None) -> bool:
    return appointment is not None and appointment.status in CANCELLABLE_STATUSES


def has_notification_consent(appointment: Appointment | None) -> bool:
    if appointment is None or appointment.type != AppointmentType.CONSULTA or appointment.patient is None:
        return False
    return appointment.patient.consent_whatsapp or appointment.patient.consent_email


def can_resend_confirmation(appointment: Appointment | None) -> bool:
    if not can_mark_status(appointment) or not has_notification_consent(appointment):
        return False
    patient = appointment.patient
    return bool(
        (patient.consent_whatsapp and patient.phone)
        or (patient.consent_email and patient.email)
    )


# ── Cancellation ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class NotificationIntent:
    """Already-decided message for the notification sender."""
    channel: NotificationChannel
    template: str
    recipient: str
    appointment_id: str
    patient_id: str
    context: dict = field(default_factory=dict)


@dataclass
class CancellationPlan:
    cancel_type: str
    status: AppointmentStatus
    reason: str
    cancelled: list[Appointment]
    deactivate_recurrence_id: str | None = None
    notifications: list[NotificationIntent] = field(default_factory=list)

    @property
    def cancelled_ids(self) -> list[str]:
        return [apt.id for apt in self.cancelled]


def notification_intents(
    appointment: Appointment,
    template: str,
    requested: bool,
    context: dict | None = None,
) -> list[NotificationIntent]:
    """
    One intent per channel the patient consented to and can be reached on.

    Without consent nothing is sent, whatever was requested.
    """
    if not requested or not has_notification_consent(appointment):
        return []
    patient = appointment.patient
    intents = []
    if patient.consent_whatsapp and patient.phone:
        intents.append(NotificationIntent(
            channel=NotificationChannel.WHATSAPP,
            template=template,
            recipient=patient.phone,
            appointment_id=appointment.id,
            patient_id=patient.id,
            context=dict(context or {}),
        ))
    if patient.consent_email and patient.email:
        intents.append(NotificationIntent(
            channel=NotificationChannel.EMAIL,
            template=template,
            recipient=patient.email,
            appointment_id=appointment.id,
            patient_id=patient.id,
            context=dict(context or {}),
        ))
    return intents


def plan_cancellation(
    appointment: Appointment,
    reason: str,
    now: datetime,
    cancel_type: str = "single",
    status: AppointmentStatus = S.CANCELADO_PROFISSIONAL,
    notify_patient: bool = False,
    series_appointments: list[Appointment] | None = None,
) -> CancellationPlan:
    """
    Decide which appointments a cancellation touches.

    "single" cancels only this occurrence. "series" cascades status and reason
    to this and every future cancellable occurrence of the same recurrence and
    deactivates the recurrence; past occurrences are preserved.
    """
    if not reason or not reason.strip():
        raise ValidationError("Motivo do cancelamento e obrigatorio")
    if cancel_type not in ("single", "series"):
        raise ValidationError("Tipo de cancelamento invalido. Use 'single' ou 'series'")
    if not is_cancelled(status):
        raise ValidationError(f"Status de cancelamento invalido: {status.value}")
    if not can_cancel(appointment):
        raise ValidationError(f'Agendamento com status "{appointment.status.value}" nao pode ser cancelado')

    reason = reason.strip()
    update = {**compute_status_update(status, now), "cancellation_reason": reason}

    if cancel_type == "series" and appointment.recurrence_id:
        targets = sorted(
            (
                apt for apt in (series_appointments or [])
                if apt.recurrence_id == appointment.recurrence_id
                and apt.scheduled_at >= now
                and apt.status in CANCELLABLE_STATUSES
            ),
            key=lambda apt: apt.scheduled_at,
        )
        if not targets:
            raise ValidationError("Nao ha agendamentos futuros para cancelar nesta serie")
        cancelled = [apt.model_copy(update=update) for apt in targets]
        notifications = notification_intents(
            appointment,
            "series_cancellation",
            notify_patient,
            {"reason": reason, "dates": [apt.scheduled_at.isoformat() for apt in targets]},
        )
        logger.debug(f"Series cancellation planned for {len(cancelled)} appointment(s) of {appointment.recurrence_id}")
        return CancellationPlan(
            cancel_type="series",
            status=status,
            reason=reason,
            cancelled=cancelled,
            deactivate_recurrence_id=appointment.recurrence_id,
            notifications=notifications,
        )

    notifications = notification_intents(
        appointment,
        "appointment_cancellation",
        notify_patient,
        {"reason": reason, "scheduled_at": appointment.scheduled_at.isoformat()},
    )
    return CancellationPlan(
        cancel_type="single",
        status=status,
        reason=reason,
        cancelled=[appointment.model_copy(update=update)],
        notifications=notifications,
    )
