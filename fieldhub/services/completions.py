"""
Job completion recorder.

A completion is accepted only for a claimed slot that belongs to both the
referenced order and subcontractor. The completion row, the order and slot
status cascade, the analytics event and the audit entry commit together.
"""
from typing import Any, List, Mapping, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, NotFoundError, RelationshipMismatchError, ValidationError
from ..models.enums import EventType, OrderStatus, SlotStatus
from ..models.models import JobCompletion, utcnow
from .analytics import record_event
from .audit import create_audit_log
from .orders import get_order
from .state_machine import ORDER_MACHINE, SLOT_MACHINE
from .subcontractors import get_subcontractor
from .time_slots import get_time_slot, require_id
from .validation import is_integer, is_number

logger = structlog.get_logger(__name__)


def _already_completed() -> ConflictError:
    return ConflictError("Time slot has already been completed", code="TIME_SLOT_ALREADY_COMPLETED")


def _validate_evidence(payload: Mapping[str, Any]) -> dict:
    photos = payload.get("completion_photos")
    if not isinstance(photos, list) or len(photos) == 0:
        raise ValidationError(
            "Completion photos must be a non-empty array",
            code="INVALID_COMPLETION_PHOTOS",
            field="completion_photos",
        )
    if not all(isinstance(photo, str) and photo.strip() for photo in photos):
        raise ValidationError(
            "Each completion photo must be a non-empty string",
            code="INVALID_COMPLETION_PHOTOS",
            field="completion_photos",
        )

    signature = payload.get("signature_data")
    if not isinstance(signature, str) or not signature.strip():
        raise ValidationError(
            "signature_data is required", code="MISSING_SIGNATURE_DATA", field="signature_data"
        )

    gps_lat = payload.get("gps_lat")
    if not is_number(gps_lat):
        raise ValidationError("Valid gps_lat is required", code="INVALID_GPS_LAT", field="gps_lat")
    gps_lng = payload.get("gps_lng")
    if not is_number(gps_lng):
        raise ValidationError("Valid gps_lng is required", code="INVALID_GPS_LNG", field="gps_lng")

    satisfaction = payload.get("customer_satisfaction")
    if satisfaction is not None:
        if not is_integer(satisfaction) or not 1 <= satisfaction <= 5:
            raise ValidationError(
                "Customer satisfaction must be an integer between 1 and 5",
                code="INVALID_CUSTOMER_SATISFACTION",
                field="customer_satisfaction",
            )
        satisfaction = int(satisfaction)

    notes = payload.get("completion_notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError(
            "completion_notes must be a string", code="INVALID_COMPLETION_NOTES", field="completion_notes"
        )

    return {
        "completion_photos": [photo.strip() for photo in photos],
        "signature_data": signature.strip(),
        "gps_lat": float(gps_lat),
        "gps_lng": float(gps_lng),
        "completion_notes": (notes.strip() or None) if notes else None,
        "customer_satisfaction": satisfaction,
    }


def record_completion(db: Session, payload: Mapping[str, Any]) -> JobCompletion:
    """
    Record field evidence for a claimed slot and close out the job.

    Checks run in a fixed order: ids present, evidence well-formed, the three
    referenced rows exist, the slot belongs to the order and subcontractor,
    the slot is claimed, and the order may move to completed.
    """
    order_id = require_id(payload.get("order_id"), "order_id", "MISSING_ORDER_ID", "INVALID_ORDER_ID")
    subcontractor_id = require_id(
        payload.get("subcontractor_id"), "subcontractor_id", "MISSING_SUBCONTRACTOR_ID", "INVALID_SUBCONTRACTOR_ID"
    )
    time_slot_id = require_id(
        payload.get("time_slot_id"), "time_slot_id", "MISSING_TIME_SLOT_ID", "INVALID_TIME_SLOT_ID"
    )
    evidence = _validate_evidence(payload)

    order = get_order(db, order_id)
    subcontractor = get_subcontractor(db, subcontractor_id)
    # Same lock order as claim: slot, then order
    slot = get_time_slot(db, time_slot_id, lock=True)
    db.refresh(order, with_for_update=True)

    if slot.order_id != order.id:
        raise RelationshipMismatchError(
            "Time slot does not belong to this order", code="TIME_SLOT_ORDER_MISMATCH", field="time_slot_id"
        )
    if slot.subcontractor_id != subcontractor.id:
        raise RelationshipMismatchError(
            "Time slot is not claimed by this subcontractor",
            code="TIME_SLOT_SUBCONTRACTOR_MISMATCH",
            field="time_slot_id",
        )

    SLOT_MACHINE.check(
        slot.status,
        SlotStatus.completed.value,
        rejections={SlotStatus.completed.value: _already_completed()},
        default=ConflictError(
            f"Time slot must be claimed to record a completion (current: {slot.status})",
            code="INVALID_TIME_SLOT_STATUS",
            current_status=slot.status,
        ),
    )
    ORDER_MACHINE.check(
        order.status,
        OrderStatus.completed.value,
        default=ConflictError(
            f"Order cannot be completed from status '{order.status}'",
            code="ORDER_NOT_COMPLETABLE",
            order_status=order.status,
        ),
    )

    now = utcnow()
    completion = JobCompletion(
        order_id=order.id,
        subcontractor_id=subcontractor.id,
        time_slot_id=slot.id,
        gps_timestamp=now,
        completed_at=now,
        **evidence,
    )
    db.add(completion)

    order_before = ORDER_MACHINE.attempt(order, OrderStatus.completed.value)
    order.updated_at = now
    SLOT_MACHINE.attempt(slot, SlotStatus.completed.value)

    try:
        db.flush()
    except IntegrityError:
        # UNIQUE(time_slot_id): another completion for this slot got there first
        db.rollback()
        raise _already_completed()
    except StaleDataError:
        db.rollback()
        raise _already_completed()

    record_event(
        db,
        EventType.completion.value,
        order_id=order.id,
        subcontractor_id=subcontractor.id,
        metadata={
            "time_slot_id": slot.id,
            "job_completion_id": completion.id,
            "customer_satisfaction": completion.customer_satisfaction,
        },
    )
    create_audit_log(
        db=db,
        entity_type="job_completion",
        entity_id=completion.id,
        action="COMPLETE",
        actor_id=str(subcontractor.id),
        actor_role="subcontractor",
        source="api",
        changes_json={"order_status": {"before": order_before, "after": OrderStatus.completed.value}},
        context={
            "order_id": order.id,
            "time_slot_id": slot.id,
            "photos": len(completion.completion_photos),
        },
    )

    db.commit()
    db.refresh(completion)
    logger.info(
        "completion_recorded",
        job_completion_id=completion.id,
        order_id=order.id,
        subcontractor_id=subcontractor.id,
        time_slot_id=slot.id,
    )
    return completion


def get_completion(db: Session, completion_id: int) -> JobCompletion:
    completion = db.query(JobCompletion).filter(JobCompletion.id == completion_id).first()
    if not completion:
        raise NotFoundError("Job completion not found", code="JOB_COMPLETION_NOT_FOUND")
    return completion


def list_completions(
    db: Session,
    order_id: Optional[int] = None,
    subcontractor_id: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[JobCompletion]:
    query = db.query(JobCompletion)
    if order_id is not None:
        query = query.filter(JobCompletion.order_id == order_id)
    if subcontractor_id is not None:
        query = query.filter(JobCompletion.subcontractor_id == subcontractor_id)
    return (
        query.order_by(JobCompletion.completed_at.desc(), JobCompletion.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
