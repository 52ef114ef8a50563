"""
Time slot API routes.
Slot creation, claiming and cancellation. Capacity and one-claim-per-slot
rules live in services/time_slots.py.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.time_slots import SlotCancelResponse, TimeSlotResponse
from ..services import time_slots as slot_service
from ..services.validation import clamp_limit

router = APIRouter(prefix="/time-slots", tags=["time-slots"])


@router.post("", response_model=TimeSlotResponse, status_code=201)
def create_time_slot(payload: dict, db: Session = Depends(get_db)):
    return slot_service.create_time_slot(db, payload)


@router.get("", response_model=List[TimeSlotResponse])
def list_time_slots(
    order_id: Optional[int] = None,
    subcontractor_id: Optional[int] = None,
    slot_date: Optional[str] = None,
    status: Optional[str] = None,
    is_available: Optional[bool] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    return slot_service.list_time_slots(
        db,
        order_id=order_id,
        subcontractor_id=subcontractor_id,
        slot_date=slot_date,
        status=status,
        is_available=is_available,
        limit=clamp_limit(limit, 50, 100),
        offset=max(offset, 0),
    )


@router.get("/{slot_id}", response_model=TimeSlotResponse)
def get_time_slot(slot_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return slot_service.get_time_slot(db, slot_id)


@router.post("/{slot_id}/claim", response_model=TimeSlotResponse)
def claim_time_slot(payload: dict, slot_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    """
    Claim an available slot for a subcontractor.
    Rejected when the slot is taken, the subcontractor is inactive or already
    at max_daily_jobs for the slot's date.
    """
    return slot_service.claim_slot(db, slot_id, payload.get("subcontractor_id"))


@router.delete("/{slot_id}", response_model=SlotCancelResponse)
def cancel_time_slot(slot_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    """Cancel a slot (soft delete). The order returns to unassigned if it was claimed or scheduled."""
    return slot_service.cancel_slot(db, slot_id)
