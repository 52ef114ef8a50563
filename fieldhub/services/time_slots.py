"""
Time-slot claim engine.

Slots move available -> claimed -> completed, or available|claimed ->
cancelled. Every status change goes through SLOT_MACHINE / ORDER_MACHINE.

Claim admission (status check, capacity count, write) runs inside one
transaction holding row locks on the slot and the subcontractor, so two
claims on the same slot, or two claims by the same subcontractor, are
serialized. The slot's version_id turns any write that slipped past the
locks into a StaleDataError instead of a silent overwrite.
"""
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    SlotNotAvailableError,
    ValidationError,
)
from ..models.enums import EventType, OrderStatus, SlotStatus, values
from ..models.models import Order, TimeSlot, utcnow
from .analytics import record_event
from .audit import create_audit_log
from .dispatch_conflict import has_capacity
from .orders import get_order
from .state_machine import ORDER_MACHINE, SLOT_MACHINE
from .subcontractors import get_subcontractor
from .validation import is_integer, is_slot_time, parse_slot_date

logger = structlog.get_logger(__name__)


def _already_claimed() -> SlotNotAvailableError:
    return SlotNotAvailableError("Time slot has already been claimed", code="SLOT_ALREADY_CLAIMED")


def get_time_slot(db: Session, slot_id: int, lock: bool = False) -> TimeSlot:
    query = db.query(TimeSlot).filter(TimeSlot.id == slot_id)
    if lock:
        query = query.with_for_update()
    slot = query.first()
    if not slot:
        raise NotFoundError("Time slot not found", code="TIME_SLOT_NOT_FOUND")
    return slot


def require_id(value: Any, field: str, missing_code: str, invalid_code: str) -> int:
    if value is None or value == "":
        raise ValidationError(f"{field} is required", code=missing_code, field=field)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not is_integer(value) or value <= 0:
        raise ValidationError(f"Valid {field} is required", code=invalid_code, field=field)
    return int(value)


def create_time_slot(db: Session, payload: Mapping[str, Any]) -> TimeSlot:
    """
    Create a slot for an existing order.

    An initial status other than ``available`` is an import path (slots
    pre-assigned outside the claim flow); it skips admission control, which
    is what the double-booking monitor exists to catch.
    """
    order_id = require_id(payload.get("order_id"), "order_id", "MISSING_ORDER_ID", "INVALID_ORDER_ID")

    slot_date_raw = payload.get("slot_date")
    if not slot_date_raw:
        raise ValidationError("slot_date is required", code="MISSING_SLOT_DATE", field="slot_date")
    start = payload.get("slot_start_time")
    if not start:
        raise ValidationError("slot_start_time is required", code="MISSING_SLOT_START_TIME", field="slot_start_time")
    end = payload.get("slot_end_time")
    if not end:
        raise ValidationError("slot_end_time is required", code="MISSING_SLOT_END_TIME", field="slot_end_time")

    slot_date = parse_slot_date(slot_date_raw)
    if slot_date is None:
        raise ValidationError(
            "Invalid slot_date format. Expected YYYY-MM-DD", code="INVALID_DATE_FORMAT", field="slot_date"
        )
    if not is_slot_time(start):
        raise ValidationError(
            "Invalid slot_start_time format. Expected HH:MM (24-hour)",
            code="INVALID_START_TIME_FORMAT",
            field="slot_start_time",
        )
    if not is_slot_time(end):
        raise ValidationError(
            "Invalid slot_end_time format. Expected HH:MM (24-hour)",
            code="INVALID_END_TIME_FORMAT",
            field="slot_end_time",
        )
    # Zero-padded HH:MM compares correctly as text
    if start >= end:
        raise ValidationError(
            "slot_start_time must be before slot_end_time", code="INVALID_TIME_RANGE", field="slot_end_time"
        )

    status = payload.get("status") or SlotStatus.available.value
    if status not in values(SlotStatus):
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(values(SlotStatus))}",
            code="INVALID_STATUS",
            field="status",
        )

    is_available = status == SlotStatus.available.value
    if "is_available" in payload and payload["is_available"] is not None:
        if not isinstance(payload["is_available"], bool) or payload["is_available"] != is_available:
            raise ValidationError(
                f"is_available must be {str(is_available).lower()} for status '{status}'",
                code="INVALID_IS_AVAILABLE",
                field="is_available",
            )

    subcontractor_id: Optional[int] = None
    if payload.get("subcontractor_id") is not None:
        if status == SlotStatus.available.value:
            raise ValidationError(
                "An available slot cannot be assigned to a subcontractor; claim it instead",
                code="INVALID_SUBCONTRACTOR_ID",
                field="subcontractor_id",
            )
        subcontractor_id = require_id(
            payload.get("subcontractor_id"), "subcontractor_id", "MISSING_SUBCONTRACTOR_ID", "INVALID_SUBCONTRACTOR_ID"
        )
    elif status in (SlotStatus.claimed.value, SlotStatus.completed.value):
        raise ValidationError(
            f"subcontractor_id is required for status '{status}'",
            code="MISSING_SUBCONTRACTOR_ID",
            field="subcontractor_id",
        )

    order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if not order:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND", status_code=400)
    if subcontractor_id is not None:
        get_subcontractor(db, subcontractor_id)

    slot = TimeSlot(
        order_id=order.id,
        subcontractor_id=subcontractor_id,
        slot_date=slot_date,
        slot_start_time=start,
        slot_end_time=end,
        is_available=is_available,
        status=status,
        claimed_at=utcnow() if subcontractor_id is not None else None,
    )
    db.add(slot)

    if status == SlotStatus.claimed.value and order.status == OrderStatus.unassigned.value:
        ORDER_MACHINE.attempt(order, OrderStatus.claimed.value)
        order.updated_at = utcnow()

    db.commit()
    db.refresh(slot)
    if status != SlotStatus.available.value:
        logger.warning(
            "time_slot_imported",
            slot_id=slot.id,
            status=status,
            subcontractor_id=subcontractor_id,
        )
    logger.info("time_slot_created", slot_id=slot.id, order_id=order.id, slot_date=slot_date.isoformat())
    return slot


def claim_slot(db: Session, slot_id: int, subcontractor_id: Any) -> TimeSlot:
    """
    Admit a subcontractor's claim on an available slot.

    Fails with SLOT_ALREADY_CLAIMED / SLOT_NOT_AVAILABLE, SUBCONTRACTOR_NOT_FOUND,
    SUBCONTRACTOR_INACTIVE, ORDER_NOT_CLAIMABLE or MAX_DAILY_JOBS_REACHED.
    On success the order advances unassigned -> claimed; later stages are left alone.
    """
    subcontractor_id = require_id(
        subcontractor_id, "subcontractor_id", "MISSING_SUBCONTRACTOR_ID", "INVALID_SUBCONTRACTOR_ID"
    )

    # Lock order: slot, then subcontractor, then order
    slot = get_time_slot(db, slot_id, lock=True)
    SLOT_MACHINE.check(
        slot.status,
        SlotStatus.claimed.value,
        rejections={SlotStatus.claimed.value: _already_claimed()},
        default=SlotNotAvailableError("Time slot is not available", code="SLOT_NOT_AVAILABLE"),
    )
    if not slot.is_available:
        raise SlotNotAvailableError("Time slot is not available", code="SLOT_NOT_AVAILABLE")

    subcontractor = get_subcontractor(db, subcontractor_id, lock=True)
    if not subcontractor.active:
        raise ConflictError("Subcontractor is not active", code="SUBCONTRACTOR_INACTIVE")

    order = get_order(db, slot.order_id, lock=True)
    if ORDER_MACHINE.is_terminal(order.status):
        raise ConflictError(
            f"Order is already {order.status}", code="ORDER_NOT_CLAIMABLE", order_status=order.status
        )

    if not has_capacity(db, subcontractor, slot.slot_date):
        logger.info(
            "claim_rejected",
            slot_id=slot.id,
            subcontractor_id=subcontractor.id,
            reason="capacity",
            max_daily_jobs=subcontractor.max_daily_jobs,
        )
        raise CapacityExceededError(
            f"Subcontractor has reached maximum daily jobs ({subcontractor.max_daily_jobs}) for this date",
            max_daily_jobs=subcontractor.max_daily_jobs,
        )

    SLOT_MACHINE.attempt(slot, SlotStatus.claimed.value)
    slot.subcontractor_id = subcontractor.id
    slot.claimed_at = utcnow()

    order_before = order.status
    if order.status == OrderStatus.unassigned.value:
        ORDER_MACHINE.attempt(order, OrderStatus.claimed.value)
        order.updated_at = utcnow()

    create_audit_log(
        db=db,
        entity_type="time_slot",
        entity_id=slot.id,
        action="CLAIM",
        actor_id=str(subcontractor.id),
        actor_role="subcontractor",
        source="api",
        changes_json={"status": {"before": SlotStatus.available.value, "after": SlotStatus.claimed.value}},
        context={
            "order_id": order.id,
            "order_status_before": order_before,
            "order_status_after": order.status,
            "slot_date": slot.slot_date.isoformat(),
        },
    )

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.info("claim_rejected", slot_id=slot_id, subcontractor_id=subcontractor_id, reason="race")
        raise _already_claimed()

    db.refresh(slot)
    logger.info(
        "slot_claimed",
        slot_id=slot.id,
        subcontractor_id=subcontractor.id,
        order_id=order.id,
        slot_date=slot.slot_date.isoformat(),
    )
    return slot


def cancel_slot(db: Session, slot_id: int) -> Dict[str, Any]:
    """
    Soft-cancel a slot. A claimed/scheduled order goes back to unassigned so a
    new slot can be claimed for it; the cancelled row is kept for reporting.
    """
    slot = get_time_slot(db, slot_id, lock=True)
    previous = SLOT_MACHINE.attempt(
        slot,
        SlotStatus.cancelled.value,
        rejections={
            SlotStatus.completed.value: ConflictError(
                "Cannot cancel a completed time slot", code="CANNOT_CANCEL_COMPLETED"
            ),
            SlotStatus.cancelled.value: ConflictError(
                "Time slot is already cancelled", code="SLOT_ALREADY_CANCELLED"
            ),
        },
    )

    order = db.query(Order).filter(Order.id == slot.order_id).with_for_update().first()
    order_before = order.status if order else None
    order_reverted = False
    if order and order.status in (OrderStatus.claimed.value, OrderStatus.scheduled.value):
        ORDER_MACHINE.attempt(order, OrderStatus.unassigned.value)
        order.updated_at = utcnow()
        order_reverted = True

    record_event(
        db,
        EventType.cancellation.value,
        order_id=slot.order_id,
        subcontractor_id=slot.subcontractor_id,
        metadata={
            "time_slot_id": slot.id,
            "slot_date": slot.slot_date.isoformat(),
            "previous_status": previous,
        },
    )
    create_audit_log(
        db=db,
        entity_type="time_slot",
        entity_id=slot.id,
        action="CANCEL",
        actor_role="dispatcher",
        source="api",
        changes_json={"status": {"before": previous, "after": SlotStatus.cancelled.value}},
        context={
            "order_id": slot.order_id,
            "order_status_before": order_before,
            "order_status_after": order.status if order else None,
        },
    )

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConflictError("Time slot was modified concurrently; retry", code="CONCURRENT_MODIFICATION")

    db.refresh(slot)
    logger.info(
        "slot_cancelled",
        slot_id=slot.id,
        previous_status=previous,
        order_id=slot.order_id,
        order_reverted=order_reverted,
    )
    return {
        "message": "Time slot cancelled successfully",
        "time_slot": slot,
        "order_id": slot.order_id,
        "order_status": order.status if order else None,
        "order_reverted": order_reverted,
    }


def list_time_slots(
    db: Session,
    order_id: Optional[int] = None,
    subcontractor_id: Optional[int] = None,
    slot_date: Optional[str] = None,
    status: Optional[str] = None,
    is_available: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[TimeSlot]:
    query = db.query(TimeSlot)

    if order_id is not None:
        query = query.filter(TimeSlot.order_id == order_id)
    if subcontractor_id is not None:
        query = query.filter(TimeSlot.subcontractor_id == subcontractor_id)
    if slot_date:
        parsed = parse_slot_date(slot_date)
        if parsed is None:
            raise ValidationError(
                "Invalid slot_date format. Expected YYYY-MM-DD", code="INVALID_DATE_FORMAT", field="slot_date"
            )
        query = query.filter(TimeSlot.slot_date == parsed)
    if status:
        if status not in values(SlotStatus):
            raise ValidationError(
                f"Invalid status. Must be one of: {', '.join(values(SlotStatus))}",
                code="INVALID_STATUS",
                field="status",
            )
        query = query.filter(TimeSlot.status == status)
    if is_available is not None:
        query = query.filter(TimeSlot.is_available == is_available)

    return (
        query.order_by(TimeSlot.slot_date.asc(), TimeSlot.slot_start_time.asc(), TimeSlot.id.asc())
        .limit(limit)
        .offset(offset)
        .all()
    )
