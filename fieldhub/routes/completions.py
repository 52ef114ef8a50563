from typing import List, Optional

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.completions import JobCompletionResponse
from ..services import completions as completion_service
from ..services.validation import clamp_limit

router = APIRouter(prefix="/job-completions", tags=["job-completions"])


@router.post("", response_model=JobCompletionResponse, status_code=201)
def record_completion(payload: dict, db: Session = Depends(get_db)):
    """Record completion evidence; the order and the slot both move to completed."""
    return completion_service.record_completion(db, payload)


@router.get("", response_model=List[JobCompletionResponse])
def list_completions(
    order_id: Optional[int] = None,
    subcontractor_id: Optional[int] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    return completion_service.list_completions(
        db,
        order_id=order_id,
        subcontractor_id=subcontractor_id,
        limit=clamp_limit(limit, 50, 100),
        offset=max(offset, 0),
    )


@router.get("/{completion_id}", response_model=JobCompletionResponse)
def get_completion(completion_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return completion_service.get_completion(db, completion_id)
