from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AnalyticsEventResponse(BaseModel):
    id: int
    event_type: str
    order_id: Optional[int] = None
    subcontractor_id: Optional[int] = None
    # ORM attribute is event_metadata; "metadata" is the column/wire name
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="event_metadata")
    created_at: datetime

    class Config:
        from_attributes = True


class DoubleBooking(BaseModel):
    subcontractor_id: int
    subcontractor_name: str
    slot_date: str
    job_count: int
    max_daily_jobs: int
    overrun: int


class TopSubcontractor(BaseModel):
    id: int
    name: str
    completions: int
    avg_rating: Optional[float] = None


class AnalyticsSummary(BaseModel):
    total_orders: int
    completed_orders: int
    completion_rate: float
    ghost_jobs: int
    double_bookings: int
    cancellations: int
    detected_double_bookings: int


class AnalyticsResponse(BaseModel):
    summary: AnalyticsSummary
    orders_by_status: Dict[str, int]
    orders_by_priority: Dict[str, int]
    orders_by_service_type: Dict[str, int]
    top_subcontractors: List[TopSubcontractor]
    double_bookings: List[DoubleBooking]
    events: Optional[List[AnalyticsEventResponse]] = None
