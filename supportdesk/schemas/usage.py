from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class UsageResponse(BaseModel):
    plan: Optional[str] = None
    total_limit: int
    current_usage: int
    remaining: int
    percentage_used: float
    reset_at: Optional[datetime] = None
    days_until_reset: Optional[int] = None


class UsageResetResponse(BaseModel):
    success: bool
    next_reset_at: datetime
