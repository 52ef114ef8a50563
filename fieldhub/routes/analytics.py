"""
Analytics API routes.
Read-side reporting plus the intake point for externally observed events.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.analytics import AnalyticsEventResponse, AnalyticsResponse, DoubleBooking
from ..services import analytics as analytics_service
from ..services.dispatch_conflict import find_double_bookings

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("", response_model=AnalyticsResponse)
def get_analytics(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    event_type: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    Dispatch summary over an optional created-at range.
    - completion_rate = completed / total, 2 decimals
    - events list included only when event_type is given
    """
    start = analytics_service.parse_range_bound(start_date, "start_date")
    end = analytics_service.parse_range_bound(end_date, "end_date", end_of_day=True)
    return analytics_service.analytics_summary(db, start=start, end=end, event_type=event_type or None)


@router.get("/double-bookings", response_model=List[DoubleBooking])
def get_double_bookings(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    subcontractor_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """(subcontractor, date) pairs holding more slots than max_daily_jobs."""
    return find_double_bookings(
        db,
        start_date=analytics_service.parse_date_bound(start_date, "start_date"),
        end_date=analytics_service.parse_date_bound(end_date, "end_date"),
        subcontractor_id=subcontractor_id,
    )


@router.post("/events", response_model=AnalyticsEventResponse, status_code=201)
def report_event(payload: dict, db: Session = Depends(get_db)):
    return analytics_service.report_event(db, payload)
