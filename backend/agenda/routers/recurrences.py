# backend/agenda/routers/recurrences.py

from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.recurrences import (
    ExceptionToggleRequest,
    ExceptionToggleResponse,
    FinalizeRequest,
    FinalizeResponse,
    FrequencyPreviewRequest,
    FrequencyPreviewResponse,
    RecurrenceDetail,
    RecurrenceEditRequest,
    RecurrenceEditResponse,
    RecurrencePatch,
)
from ..services import agenda

router = APIRouter(prefix="/recurrences", tags=["recurrences"])


@router.get("/{id}", response_model=RecurrenceDetail)
def get_recurrence(id: str, db: Session = Depends(get_db)):
    return agenda.get_recurrence_detail(db, id, datetime.now())


@router.patch("/{id}", response_model=RecurrenceEditResponse)
def update_recurrence(
    id: str,
    data: RecurrenceEditRequest,
    db: Session = Depends(get_db),
):
    """Change the series template and every appointment that has not happened yet."""
    patch = RecurrencePatch.model_validate(data.model_dump(exclude={"apply_to"}))
    return agenda.edit_recurrence(db, id, patch, datetime.now())


@router.post("/{id}/frequency-preview", response_model=FrequencyPreviewResponse)
def preview_frequency(
    id: str,
    data: FrequencyPreviewRequest,
    db: Session = Depends(get_db),
):
    """Appointments that would be removed by switching to another frequency."""
    return agenda.preview_recurrence_frequency(db, id, data.recurrence_type, datetime.now())


@router.post("/{id}/exceptions", response_model=ExceptionToggleResponse)
def toggle_exception(
    id: str,
    data: ExceptionToggleRequest,
    db: Session = Depends(get_db),
):
    return agenda.toggle_recurrence_exception(db, id, data, datetime.now())


@router.post("/{id}/finalize", response_model=FinalizeResponse)
def finalize_recurrence(
    id: str,
    data: FinalizeRequest,
    db: Session = Depends(get_db),
):
    return agenda.finalize_series(db, id, data, datetime.now())
