# backend/agenda/routers/appointments.py
# DELETE = 405: appointments are cancelled, never removed

from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.appointments import (
    Appointment,
    AppointmentCreate,
    AppointmentCreateResult,
    CancelRequest,
    CancelResponse,
    StatusUpdate,
)
from ..schemas.recurrences import RecurrenceEditResponse, RecurrencePatch
from ..services import agenda
from ..services.repository import AgendaRepository

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.get("/{id}", response_model=Appointment)
def get_appointment(id: str, db: Session = Depends(get_db)):
    return AgendaRepository(db).get_appointment(id)


@router.post("/", response_model=AppointmentCreateResult, status_code=status.HTTP_201_CREATED)
def create_appointment(
    clinic_id: str,
    data: AppointmentCreate,
    db: Session = Depends(get_db),
):
    """Create one appointment, or a whole recurring series (all or nothing)."""
    return agenda.create_appointment(db, data, clinic_id, datetime.now())


@router.patch("/{id}", response_model=RecurrenceEditResponse)
def update_appointment(
    id: str,
    data: RecurrencePatch,
    db: Session = Depends(get_db),
):
    """Edit this occurrence only."""
    return agenda.edit_appointment(db, id, data, datetime.now())


@router.post("/{id}/status", response_model=Appointment)
def update_status(
    id: str,
    data: StatusUpdate,
    db: Session = Depends(get_db),
):
    return agenda.change_status(db, id, data, datetime.now())


@router.post("/{id}/cancel", response_model=CancelResponse)
def cancel_appointment(
    id: str,
    data: CancelRequest,
    db: Session = Depends(get_db),
):
    return agenda.cancel_appointment(db, id, data, datetime.now())


@router.delete("/{id}")
def delete_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )
