from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class InventoryItem(BaseModel):
    name: str
    quantity: float
    in_stock: bool


class OrderResponse(BaseModel):
    id: int
    customer_name: str
    customer_email: str
    customer_phone: str
    address: str
    city: str
    location_lat: float
    location_lng: float
    service_type: str
    inventory_items: List[InventoryItem]
    inventory_status: str
    priority: str
    estimated_duration: int
    special_instructions: Optional[str] = None
    status: str
    due_date: datetime
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderDeleteResponse(BaseModel):
    message: str = "Order deleted successfully"
    id: int
    customer_name: str
    status: str
    deleted_time_slots: int
    deleted_completions: int


class AuditEntryResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    action: str
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    source: Optional[str] = None
    changes_json: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    timestamp_utc: datetime
    integrity_hash: Optional[str] = None

    class Config:
        from_attributes = True
