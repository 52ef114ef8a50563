"""
Order lifecycle: intake, partial updates, listings and guarded transitions.
"""
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy import case, or_
from sqlalchemy.orm import Session

from ..errors import InvalidTransitionError, NotFoundError
from ..models.enums import EventType, OrderStatus, SlotStatus, PRIORITY_RANK
from ..models.models import JobCompletion, Order, TimeSlot, utcnow
from .analytics import record_event
from .audit import compute_diff, create_audit_log, get_audit_logs
from .state_machine import ORDER_MACHINE, SLOT_MACHINE
from .validation import ORDER_RULES, validate_create, validate_update

logger = structlog.get_logger(__name__)

AVAILABLE_STATUSES = (OrderStatus.unassigned.value, OrderStatus.scheduled.value)

# Owned by claim_slot, cancel_slot and record_completion
CASCADE_ONLY_STATUSES = (
    OrderStatus.unassigned.value,
    OrderStatus.claimed.value,
    OrderStatus.completed.value,
)

_priority_rank = case(PRIORITY_RANK, value=Order.priority, else_=5)


def get_order(db: Session, order_id: int, lock: bool = False) -> Order:
    query = db.query(Order).filter(Order.id == order_id)
    if lock:
        query = query.with_for_update()
    order = query.first()
    if not order:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    return order


def create_order(db: Session, payload: Mapping[str, Any]) -> Order:
    data = validate_create(ORDER_RULES, payload)
    order = Order(**data, created_at=utcnow())
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("order_created", order_id=order.id, priority=order.priority, city=order.city)
    return order


def update_order(db: Session, order_id: int, payload: Mapping[str, Any]) -> Order:
    """
    Apply a partial update.

    A ``status`` in the payload is an administrative override: it is checked
    for enum membership only, bypasses the transition table and is written to
    the audit log with its before/after values.
    """
    data = validate_update(ORDER_RULES, payload)
    order = get_order(db, order_id, lock=True)

    before = {k: getattr(order, k) for k in data}
    for field, value in data.items():
        setattr(order, field, value)
    order.updated_at = utcnow()

    if "status" in data and before["status"] != data["status"]:
        create_audit_log(
            db=db,
            entity_type="order",
            entity_id=order.id,
            action="STATUS_OVERRIDE",
            actor_role="dispatcher",
            source="api",
            changes_json=compute_diff({"status": before["status"]}, {"status": data["status"]}),
        )
        logger.warning(
            "order_status_overridden",
            order_id=order.id,
            before=before["status"],
            after=data["status"],
        )

    db.commit()
    db.refresh(order)
    logger.info("order_updated", order_id=order.id, fields=sorted(data))
    return order


def _lock_order_and_slots(db: Session, order_id: int):
    """
    Lock every slot of an order, then the order itself.

    Claim, cancel and completion lock slot before order; paths that start
    from the order take locks in the same sequence.
    """
    order = get_order(db, order_id)
    slots = (
        db.query(TimeSlot)
        .filter(TimeSlot.order_id == order.id)
        .order_by(TimeSlot.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    db.refresh(order, with_for_update=True)
    return order, slots


def _transition_rejected(current: str, target: str) -> InvalidTransitionError:
    return InvalidTransitionError(
        f"Cannot move order from '{current}' to '{target}'",
        code="INVALID_ORDER_TRANSITION",
        field="status",
        current_status=current,
        allowed=sorted(ORDER_MACHINE.allowed_from(current) - set(CASCADE_ONLY_STATUSES)),
    )


def transition_order(db: Session, order_id: int, target: str) -> Order:
    """
    Move an order through the transition table.

    unassigned, claimed and completed are only set by the slot claim, slot
    cancel and completion cascades, so they are refused here. Cancelling an
    order also cancels its open slots in the same transaction.
    """
    order, slots = _lock_order_and_slots(db, order_id)
    if target in CASCADE_ONLY_STATUSES:
        raise _transition_rejected(order.status, target)
    previous = ORDER_MACHINE.attempt(order, target, default=_transition_rejected(order.status, target))
    order.updated_at = utcnow()

    cancelled_slot_ids: List[int] = []
    if target == OrderStatus.cancelled.value:
        for slot in slots:
            if slot.status in (SlotStatus.available.value, SlotStatus.claimed.value):
                SLOT_MACHINE.attempt(slot, SlotStatus.cancelled.value)
                cancelled_slot_ids.append(slot.id)
        record_event(
            db,
            EventType.cancellation.value,
            order_id=order.id,
            metadata={"reason": "order_cancelled", "cancelled_slot_ids": cancelled_slot_ids},
        )

    create_audit_log(
        db=db,
        entity_type="order",
        entity_id=order.id,
        action="TRANSITION",
        actor_role="dispatcher",
        source="api",
        changes_json=compute_diff({"status": previous}, {"status": target}),
        context={"cancelled_slot_ids": cancelled_slot_ids} if cancelled_slot_ids else None,
    )
    db.commit()
    db.refresh(order)
    logger.info(
        "order_transitioned",
        order_id=order.id,
        before=previous,
        after=target,
        cancelled_slots=len(cancelled_slot_ids),
    )
    return order


def delete_order(db: Session, order_id: int) -> Dict[str, Any]:
    """Administrative hard delete of an order and the rows that reference it."""
    order, _ = _lock_order_and_slots(db, order_id)
    snapshot = {
        "customer_name": order.customer_name,
        "status": order.status,
        "city": order.city,
        "due_date": order.due_date,
    }

    completions = db.query(JobCompletion).filter(JobCompletion.order_id == order.id).delete(
        synchronize_session=False
    )
    slots = db.query(TimeSlot).filter(TimeSlot.order_id == order.id).delete(synchronize_session=False)
    db.delete(order)

    create_audit_log(
        db=db,
        entity_type="order",
        entity_id=order_id,
        action="DELETE",
        actor_role="dispatcher",
        source="api",
        changes_json={"before": snapshot},
        context={"deleted_time_slots": slots, "deleted_completions": completions},
    )
    db.commit()
    logger.warning("order_deleted", order_id=order_id, time_slots=slots, completions=completions)
    return {"id": order_id, **snapshot, "deleted_time_slots": slots, "deleted_completions": completions}


def list_orders(
    db: Session,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    inventory_status: Optional[str] = None,
    city: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Order]:
    """Filtered orders, most urgent first, newest first within a priority."""
    query = db.query(Order)

    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Order.customer_name.ilike(pattern),
                Order.customer_email.ilike(pattern),
                Order.address.ilike(pattern),
            )
        )
    if status:
        query = query.filter(Order.status == status)
    if priority:
        query = query.filter(Order.priority == priority)
    if inventory_status:
        query = query.filter(Order.inventory_status == inventory_status)
    if city:
        query = query.filter(Order.city == city)

    return (
        query.order_by(_priority_rank.asc(), Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def list_available_orders(
    db: Session,
    city: Optional[str] = None,
    service_type: Optional[str] = None,
    priority: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> List[Order]:
    """The feed subcontractors browse: open orders by urgency, then due date."""
    query = db.query(Order).filter(Order.status.in_(AVAILABLE_STATUSES))

    if city:
        query = query.filter(Order.city == city)
    if service_type:
        query = query.filter(Order.service_type == service_type)
    if priority:
        query = query.filter(Order.priority == priority)

    return (
        query.order_by(_priority_rank.asc(), Order.due_date.asc(), Order.id.asc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def order_history(db: Session, order_id: int, limit: int = 100, offset: int = 0) -> list:
    get_order(db, order_id)
    return get_audit_logs(db, entity_type="order", entity_id=order_id, limit=limit, offset=offset)
