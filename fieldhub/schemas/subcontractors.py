from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class SubcontractorResponse(BaseModel):
    id: int
    name: str
    email: str
    phone: str
    service_areas: List[str]
    max_daily_jobs: int
    rating: float
    active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
