# backend/agenda/routers/slots.py
"""
Slots API endpoints.

GET /slots/day - Slots of one professional for a day, or the
                 all-professionals overview grid when professional_id is omitted
"""

from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.slots import SlotsDayResponse
from ..services.agenda import get_day_slots


router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("/day", response_model=SlotsDayResponse)
def get_slots_day(
    clinic_id: str,
    professional_id: str | None = None,
    target_date: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
):
    """Get the slots of a day (past days included: the agenda is also a history)."""
    return get_day_slots(db, target_date, clinic_id, professional_id)
