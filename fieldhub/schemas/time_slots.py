from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class TimeSlotResponse(BaseModel):
    id: int
    order_id: int
    subcontractor_id: Optional[int] = None
    slot_date: date
    slot_start_time: str
    slot_end_time: str
    is_available: bool
    claimed_at: Optional[datetime] = None
    status: str

    class Config:
        from_attributes = True


class SlotCancelResponse(BaseModel):
    message: str
    time_slot: TimeSlotResponse
    order_id: int
    order_status: Optional[str] = None
    order_reverted: bool
