from typing import List, Optional

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.subcontractors import SubcontractorResponse
from ..services import subcontractors as subcontractor_service
from ..services.validation import clamp_limit

router = APIRouter(prefix="/subcontractors", tags=["subcontractors"])


@router.post("", response_model=SubcontractorResponse, status_code=201)
def create_subcontractor(payload: dict, db: Session = Depends(get_db)):
    return subcontractor_service.create_subcontractor(db, payload)


@router.get("", response_model=List[SubcontractorResponse])
def list_subcontractors(
    active: Optional[bool] = None,
    service_area: Optional[str] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """List subcontractors, best rated first."""
    return subcontractor_service.list_subcontractors(
        db,
        active=active,
        service_area=service_area or None,
        search=search.strip() if search and search.strip() else None,
        limit=clamp_limit(limit, 50, 100),
        offset=max(offset, 0),
    )


@router.get("/{subcontractor_id}", response_model=SubcontractorResponse)
def get_subcontractor(subcontractor_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return subcontractor_service.get_subcontractor(db, subcontractor_id)


@router.patch("/{subcontractor_id}", response_model=SubcontractorResponse)
def update_subcontractor(
    payload: dict,
    subcontractor_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
):
    return subcontractor_service.update_subcontractor(db, subcontractor_id, payload)
