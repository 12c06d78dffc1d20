# backend/agenda/services/scheduling/group_sessions.py
"""
Group sessions are not stored: they are the appointments that share
group_id and scheduled_at, read back as one aggregate.
"""

from datetime import date

from ...schemas.appointments import Appointment, GroupParticipant, GroupSession


def build_group_sessions(
    appointments: list[Appointment],
    group_names: dict[str, str] | None = None,
) -> list[GroupSession]:
    """Aggregate group appointments by (group_id, scheduled_at), first-seen order."""
    group_names = group_names or {}
    sessions: dict[tuple[str, str], GroupSession] = {}

    for apt in appointments:
        if not apt.group_id:
            continue
        key = (apt.group_id, apt.scheduled_at.isoformat())
        session = sessions.get(key)
        if session is None:
            session = GroupSession(
                group_id=apt.group_id,
                group_name=group_names.get(apt.group_id),
                scheduled_at=apt.scheduled_at,
                end_at=apt.end_at,
                professional_profile_id=apt.professional_profile_id,
                additional_professional_ids=list(apt.additional_professional_ids),
            )
            sessions[key] = session
        elif apt.end_at > session.end_at:
            session.end_at = apt.end_at

        session.participants.append(GroupParticipant(
            appointment_id=apt.id,
            patient_id=apt.patient.id if apt.patient else None,
            patient_name=apt.patient.name if apt.patient else None,
            status=apt.status,
        ))

    return list(sessions.values())


def sessions_for_professional(
    sessions: list[GroupSession],
    professional_id: str | None,
    target_date: date | None = None,
) -> list[GroupSession]:
    """
    Sessions that occupy professional_id's time.

    Participant statuses are irrelevant; a session blocks its own professional
    and the professionals listed as additional. Without a professional id every
    session is returned.
    """
    result = []
    for session in sessions:
        if target_date is not None and session.scheduled_at.date() != target_date:
            continue
        if (
            professional_id is None
            or session.professional_profile_id == professional_id
            or professional_id in session.additional_professional_ids
        ):
            result.append(session)
    return result
