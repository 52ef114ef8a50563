from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class JobCompletionResponse(BaseModel):
    id: int
    order_id: int
    subcontractor_id: int
    time_slot_id: int
    completion_photos: List[str]
    signature_data: str
    gps_lat: float
    gps_lng: float
    gps_timestamp: datetime
    completion_notes: Optional[str] = None
    completed_at: datetime
    customer_satisfaction: Optional[int] = None

    class Config:
        from_attributes = True
