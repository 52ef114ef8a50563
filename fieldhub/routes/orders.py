"""
Order API routes.
Intake, listings, partial updates, guarded status transitions and the
administrative delete.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import ValidationError
from ..models.enums import InventoryStatus, OrderStatus, Priority, ServiceType, values
from ..schemas.orders import AuditEntryResponse, OrderDeleteResponse, OrderResponse
from ..services import orders as order_service
from ..services.validation import clamp_limit, clean_choice_filter

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=201)
def create_order(payload: dict, db: Session = Depends(get_db)):
    return order_service.create_order(db, payload)


@router.get("", response_model=List[OrderResponse])
def list_orders(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    inventory_status: Optional[str] = None,
    city: Optional[str] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """
    List orders, most urgent first.
    - Filters: status, priority, inventory_status, city
    - search matches customer name, email and address
    """
    return order_service.list_orders(
        db,
        status=clean_choice_filter(status, values(OrderStatus), "INVALID_STATUS", "status"),
        priority=clean_choice_filter(priority, values(Priority), "INVALID_PRIORITY", "priority"),
        inventory_status=clean_choice_filter(
            inventory_status, values(InventoryStatus), "INVALID_INVENTORY_STATUS", "inventory_status"
        ),
        city=city or None,
        search=search.strip() if search and search.strip() else None,
        limit=clamp_limit(limit, settings.order_page_limit_default, settings.order_page_limit_max),
        offset=max(offset, 0),
    )


# Declared before /{order_id} so "available" is not parsed as an id
@router.get("/available", response_model=List[OrderResponse])
def list_available_orders(
    city: Optional[str] = None,
    service_type: Optional[str] = None,
    priority: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """Orders open for claiming (unassigned or scheduled)."""
    return order_service.list_available_orders(
        db,
        city=city or None,
        service_type=clean_choice_filter(service_type, values(ServiceType), "INVALID_SERVICE_TYPE", "service_type"),
        priority=clean_choice_filter(priority, values(Priority), "INVALID_PRIORITY", "priority"),
        limit=clamp_limit(limit, settings.available_page_limit_default, settings.available_page_limit_max),
        offset=max(offset, 0),
    )


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return order_service.get_order(db, order_id)


@router.patch("/{order_id}", response_model=OrderResponse)
def update_order(payload: dict, order_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    """
    Partial update. ``id`` and ``created_at`` cannot be changed; a ``status``
    value is applied as an audited administrative override.
    """
    return order_service.update_order(db, order_id, payload)


@router.post("/{order_id}/status", response_model=OrderResponse)
def transition_order(payload: dict, order_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    """Move an order along the transition table; cancelling also cancels its open slots."""
    target = clean_choice_filter(payload.get("status"), values(OrderStatus), "INVALID_STATUS", "status")
    if target is None:
        raise ValidationError("status is required", code="MISSING_STATUS", field="status")
    return order_service.transition_order(db, order_id, target)


@router.get("/{order_id}/history", response_model=List[AuditEntryResponse])
def order_history(
    order_id: int = Path(..., gt=0),
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    return order_service.order_history(
        db, order_id, limit=clamp_limit(limit, 100, 500), offset=max(offset, 0)
    )


@router.delete("/{order_id}", response_model=OrderDeleteResponse)
def delete_order(order_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    """Delete an order (hard delete) together with its time slots and completions."""
    return order_service.delete_order(db, order_id)
