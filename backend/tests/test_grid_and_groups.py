from datetime import date, datetime

from agenda.schemas.appointments import AppointmentStatus
from agenda.services.scheduling import (
    AgendaConfig,
    build_group_sessions,
    compute_multi_professional_grid,
    sessions_for_professional,
)

DAY = date(2026, 3, 2)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(DAY.year, DAY.month, DAY.day, hour, minute)


# ── Overview grid ────────────────────────────────────────────────────────


def test_grid_has_fixed_half_hour_cells():
    slots = compute_multi_professional_grid(DAY, [])

    assert len(slots) == 28
    assert slots[0].time == "07:00"
    assert slots[-1].time == "20:30"
    assert all(slot.is_available for slot in slots)


def test_grid_buckets_appointments_of_every_professional(make_appointment):
    a = make_appointment(at(8, 15), professional_id="prof-1")
    b = make_appointment(at(8, 0), professional_id="prof-2")
    cells = {slot.time: slot for slot in compute_multi_professional_grid(DAY, [a, b])}

    assert cells["08:00"].appointments == [a, b]
    assert cells["08:00"].is_available is False
    assert cells["08:30"].appointments == []
    assert cells["08:30"].is_available is True


def test_grid_cancelled_entries_are_listed_but_do_not_block(make_appointment):
    cancelled = make_appointment(at(10), status=AppointmentStatus.CANCELADO_ACORDADO)
    cells = {slot.time: slot for slot in compute_multi_professional_grid(DAY, [cancelled])}

    assert cells["10:00"].appointments == [cancelled]
    assert cells["10:00"].is_available is True


def test_grid_group_session_start_marks_cell(make_appointment):
    participant = make_appointment(at(9), minutes=90, group_id="group-1", status=AppointmentStatus.CANCELADO_FALTA)
    sessions = build_group_sessions([participant])
    cells = {slot.time: slot for slot in compute_multi_professional_grid(DAY, [participant], sessions)}

    assert cells["09:00"].is_available is False
    assert cells["09:30"].is_available is True


def test_grid_ignores_entries_outside_its_hours_and_other_days(make_appointment):
    early = make_appointment(at(6, 30))
    tomorrow = make_appointment(datetime(2026, 3, 3, 8, 0))

    slots = compute_multi_professional_grid(DAY, [early, tomorrow])

    assert all(slot.appointments == [] for slot in slots)


def test_grid_honours_config():
    slots = compute_multi_professional_grid(DAY, [], config=AgendaConfig(grid_start_hour=8, grid_end_hour=9, grid_step_minutes=15))

    assert [slot.time for slot in slots] == ["08:00", "08:15", "08:30", "08:45"]


# ── Group sessions ───────────────────────────────────────────────────────


def test_build_group_sessions_aggregates_participants(make_appointment):
    first = make_appointment(at(14), minutes=60, group_id="group-1", patient_name="Ana")
    second = make_appointment(at(14), minutes=90, group_id="group-1", patient_name="Bia")
    individual = make_appointment(at(16))

    sessions = build_group_sessions([first, second, individual], {"group-1": "Grupo TCC"})

    assert len(sessions) == 1
    session = sessions[0]
    assert session.group_name == "Grupo TCC"
    assert session.end_at == at(15, 30)
    assert [p.patient_name for p in session.participants] == ["Ana", "Bia"]


def test_sessions_at_different_times_are_separate(make_appointment):
    morning = make_appointment(at(9), group_id="group-1")
    evening = make_appointment(at(18), group_id="group-1")

    assert len(build_group_sessions([morning, evening])) == 2


def test_sessions_for_professional_includes_additional_professionals(make_appointment):
    participant = make_appointment(
        at(9), group_id="group-1", professional_id="prof-1", additional_professional_ids=["prof-3"],
    )
    sessions = build_group_sessions([participant])

    assert sessions_for_professional(sessions, "prof-1") == sessions
    assert sessions_for_professional(sessions, "prof-3") == sessions
    assert sessions_for_professional(sessions, "prof-2") == []
    assert sessions_for_professional(sessions, None) == sessions
    assert sessions_for_professional(sessions, "prof-1", date(2026, 3, 3)) == []
