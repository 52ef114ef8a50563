"""
Dispatch conflict detection service.
HARD STOP rule: a subcontractor may not hold more than max_daily_jobs
committed slots on one calendar date.
"""
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.enums import SlotStatus
from ..models.models import Subcontractor, TimeSlot


def count_daily_jobs(db: Session, subcontractor_id: int, date_val: date) -> int:
    """
    Count committed slots a subcontractor holds on a date.

    Claimed and completed slots both count; only cancelled ones are excluded.
    """
    query = db.query(func.count(TimeSlot.id)).filter(
        TimeSlot.subcontractor_id == subcontractor_id,
        TimeSlot.slot_date == date_val,
        TimeSlot.status != SlotStatus.cancelled.value,
    )
    return int(query.scalar() or 0)


def has_capacity(db: Session, subcontractor: Subcontractor, date_val: date) -> bool:
    """True if one more slot on ``date_val`` stays within max_daily_jobs."""
    return count_daily_jobs(db, subcontractor.id, date_val) < subcontractor.max_daily_jobs


def find_double_bookings(
    db: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    subcontractor_id: Optional[int] = None
) -> List[Dict]:
    """
    Find (subcontractor, date) pairs whose committed slot count exceeds capacity.

    Claims admitted through the claim engine can never produce these, so any
    row returned means some path wrote slot assignments around the capacity
    check.

    Returns:
        List of dicts ordered by date then subcontractor
    """
    job_count = func.count(TimeSlot.id).label("job_count")
    query = (
        db.query(
            TimeSlot.subcontractor_id,
            Subcontractor.name,
            Subcontractor.max_daily_jobs,
            TimeSlot.slot_date,
            job_count,
        )
        .join(Subcontractor, Subcontractor.id == TimeSlot.subcontractor_id)
        .filter(TimeSlot.status != SlotStatus.cancelled.value)
    )

    if start_date:
        query = query.filter(TimeSlot.slot_date >= start_date)
    if end_date:
        query = query.filter(TimeSlot.slot_date <= end_date)
    if subcontractor_id is not None:
        query = query.filter(TimeSlot.subcontractor_id == subcontractor_id)

    rows = (
        query.group_by(
            TimeSlot.subcontractor_id,
            Subcontractor.name,
            Subcontractor.max_daily_jobs,
            TimeSlot.slot_date,
        )
        .having(func.count(TimeSlot.id) > Subcontractor.max_daily_jobs)
        .order_by(TimeSlot.slot_date.asc(), TimeSlot.subcontractor_id.asc())
        .all()
    )

    return [
        {
            "subcontractor_id": row.subcontractor_id,
            "subcontractor_name": row.name,
            "slot_date": row.slot_date.isoformat(),
            "job_count": int(row.job_count),
            "max_daily_jobs": row.max_daily_jobs,
            "overrun": int(row.job_count) - row.max_daily_jobs,
        }
        for row in rows
    ]
