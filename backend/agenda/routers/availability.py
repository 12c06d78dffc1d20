# backend/agenda/routers/availability.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.generated import (
    AvailabilityExceptions as DBAvailabilityExceptions,
    AvailabilityRules as DBAvailabilityRules,
    ProfessionalProfiles as DBProfessionalProfiles,
)
from ..schemas.availability import (
    AvailabilityException,
    AvailabilityExceptionCreate,
    AvailabilityRule,
    AvailabilityRuleCreate,
)
from ..services.repository import AgendaRepository

router = APIRouter(prefix="/availability", tags=["availability"])


def _check_professional(db: Session, professional_id: str) -> DBProfessionalProfiles:
    obj = db.get(DBProfessionalProfiles, professional_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Professional not found")
    return obj


# ── Rules ────────────────────────────────────────────────────────────────


@router.get("/rules", response_model=list[AvailabilityRule])
def list_rules(professional_id: str, db: Session = Depends(get_db)):
    _check_professional(db, professional_id)
    return AgendaRepository(db).list_rules(professional_id)


@router.post("/rules", response_model=AvailabilityRule, status_code=status.HTTP_201_CREATED)
def create_rule(
    data: AvailabilityRuleCreate,
    db: Session = Depends(get_db),
):
    _check_professional(db, data.professional_profile_id)
    obj = DBAvailabilityRules(
        professional_profile_id=data.professional_profile_id,
        day_of_week=data.day_of_week,
        start_time=data.start_time,
        end_time=data.end_time,
        is_active=int(data.is_active),
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


# ── Exceptions ───────────────────────────────────────────────────────────


@router.get("/exceptions", response_model=list[AvailabilityException])
def list_exceptions(
    clinic_id: str,
    professional_id: str | None = None,
    db: Session = Depends(get_db),
):
    """Own exceptions of the professional plus the clinic-wide ones, oldest first."""
    return AgendaRepository(db).list_exceptions(clinic_id, professional_id)


@router.post("/exceptions", response_model=AvailabilityException, status_code=status.HTTP_201_CREATED)
def create_exception(
    clinic_id: str,
    data: AvailabilityExceptionCreate,
    db: Session = Depends(get_db),
):
    if data.professional_profile_id:
        _check_professional(db, data.professional_profile_id)
    elif not data.is_clinic_wide:
        raise HTTPException(
            status_code=400,
            detail="professional_profile_id is required unless the exception is clinic-wide",
        )

    obj = DBAvailabilityExceptions(
        clinic_id=clinic_id,
        professional_profile_id=data.professional_profile_id,
        date=data.date.isoformat() if data.date else None,
        day_of_week=data.day_of_week,
        is_recurring=int(data.is_recurring),
        is_available=int(data.is_available),
        start_time=data.start_time,
        end_time=data.end_time,
        reason=data.reason,
        is_clinic_wide=int(data.is_clinic_wide),
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
