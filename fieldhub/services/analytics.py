"""
Read-side reporting over orders, completions and analytics events.

Nothing here takes part in scheduling decisions. ``record_event`` is the only
writer; it is called inside the transaction of the operation it observes, or
by external triggers (ghost jobs are only ever reported that way).
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models.enums import EventType, OrderStatus, values
from ..models.models import AnalyticsEvent, JobCompletion, Order, Subcontractor, utcnow
from .dispatch_conflict import find_double_bookings
from .validation import parse_timestamp

logger = structlog.get_logger(__name__)

TOP_SUBCONTRACTORS = 10


def record_event(
    db: Session,
    event_type: str,
    order_id: Optional[int] = None,
    subcontractor_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AnalyticsEvent:
    """Add an analytics event to the current transaction (flushed, not committed)."""
    if event_type not in values(EventType):
        raise ValidationError(
            f"Event type must be one of: {', '.join(values(EventType))}",
            code="INVALID_EVENT_TYPE",
            field="event_type",
        )
    event = AnalyticsEvent(
        event_type=event_type,
        order_id=order_id,
        subcontractor_id=subcontractor_id,
        event_metadata=metadata or {},
        created_at=utcnow(),
    )
    db.add(event)
    db.flush()
    return event


def report_event(db: Session, payload: Dict[str, Any]) -> AnalyticsEvent:
    """Record an externally observed event (e.g. a ghost job reported by HQ)."""
    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object", code="INVALID_METADATA", field="metadata")
    for field in ("order_id", "subcontractor_id"):
        value = payload.get(field)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValidationError(f"{field} must be an integer", code=f"INVALID_{field.upper()}", field=field)

    event = record_event(
        db,
        payload.get("event_type"),
        order_id=payload.get("order_id"),
        subcontractor_id=payload.get("subcontractor_id"),
        metadata=metadata,
    )
    db.commit()
    db.refresh(event)
    logger.info("analytics_event_recorded", event_type=event.event_type, event_id=event.id)
    return event


def _count_by(db: Session, column, created_filters: list) -> Dict[str, int]:
    rows = db.query(column, func.count(Order.id)).filter(*created_filters).group_by(column).all()
    return {key: int(count) for key, count in rows}


def _event_count(db: Session, event_type: str, event_filters: list) -> int:
    return int(
        db.query(func.count(AnalyticsEvent.id))
        .filter(AnalyticsEvent.event_type == event_type, *event_filters)
        .scalar()
        or 0
    )


def top_subcontractors(
    db: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = TOP_SUBCONTRACTORS,
) -> List[Dict[str, Any]]:
    """
    Subcontractors ranked by completion count.

    The average only covers completions that carry a satisfaction score;
    it is None when none do.
    """
    join_on = [JobCompletion.subcontractor_id == Subcontractor.id]
    if start:
        join_on.append(JobCompletion.completed_at >= start)
    if end:
        join_on.append(JobCompletion.completed_at <= end)

    completions = func.count(JobCompletion.id)
    rows = (
        db.query(
            Subcontractor.id,
            Subcontractor.name,
            completions.label("completions"),
            func.avg(JobCompletion.customer_satisfaction).label("avg_rating"),
        )
        .outerjoin(JobCompletion, and_(*join_on))
        .group_by(Subcontractor.id, Subcontractor.name)
        .order_by(completions.desc(), Subcontractor.name.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": row.id,
            "name": row.name,
            "completions": int(row.completions),
            "avg_rating": round(float(row.avg_rating), 2) if row.avg_rating is not None else None,
        }
        for row in rows
    ]


def analytics_summary(
    db: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    event_type: Optional[str] = None,
) -> Dict[str, Any]:
    order_filters = []
    event_filters = []
    if start:
        order_filters.append(Order.created_at >= start)
        event_filters.append(AnalyticsEvent.created_at >= start)
    if end:
        order_filters.append(Order.created_at <= end)
        event_filters.append(AnalyticsEvent.created_at <= end)

    total_orders = int(db.query(func.count(Order.id)).filter(*order_filters).scalar() or 0)
    completed_orders = int(
        db.query(func.count(Order.id))
        .filter(Order.status == OrderStatus.completed.value, *order_filters)
        .scalar()
        or 0
    )
    completion_rate = round(completed_orders / total_orders, 2) if total_orders else 0.0

    detected = find_double_bookings(
        db,
        start_date=start.date() if start else None,
        end_date=end.date() if end else None,
    )

    response: Dict[str, Any] = {
        "summary": {
            "total_orders": total_orders,
            "completed_orders": completed_orders,
            "completion_rate": completion_rate,
            "ghost_jobs": _event_count(db, EventType.ghost_job.value, event_filters),
            "double_bookings": _event_count(db, EventType.double_book.value, event_filters),
            "cancellations": _event_count(db, EventType.cancellation.value, event_filters),
            "detected_double_bookings": len(detected),
        },
        "orders_by_status": _count_by(db, Order.status, order_filters),
        "orders_by_priority": _count_by(db, Order.priority, order_filters),
        "orders_by_service_type": _count_by(db, Order.service_type, order_filters),
        "top_subcontractors": top_subcontractors(db, start=start, end=end),
        "double_bookings": detected,
    }

    if event_type:
        if event_type not in values(EventType):
            raise ValidationError(
                f"Event type must be one of: {', '.join(values(EventType))}",
                code="INVALID_EVENT_TYPE",
                field="event_type",
            )
        response["events"] = (
            db.query(AnalyticsEvent)
            .filter(AnalyticsEvent.event_type == event_type, *event_filters)
            .order_by(AnalyticsEvent.created_at.desc(), AnalyticsEvent.id.desc())
            .all()
        )

    return response


def parse_range_bound(value: Optional[str], field: str, end_of_day: bool = False) -> Optional[datetime]:
    """Turn a start_date/end_date query value into an aware datetime bound."""
    if not value:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValidationError(f"Invalid {field} format", code="INVALID_DATE_RANGE", field=field)
    if end_of_day and len(value.strip()) == 10:
        parsed = parsed.replace(hour=23, minute=59, second=59, microsecond=999999)
    return parsed


def parse_date_bound(value: Optional[str], field: str) -> Optional[date]:
    bound = parse_range_bound(value, field)
    return bound.date() if bound else None
