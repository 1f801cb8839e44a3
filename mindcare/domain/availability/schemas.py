"""Availability domain schemas - Pydantic models for validation"""

from datetime import time

from pydantic import BaseModel


class WindowSet(BaseModel):
    """Schema for creating or replacing a weekly window.

    Windows are keyed by (day_of_week, start_time); sending an existing key
    replaces its end time and enabled flag.
    """

    day_of_week: int  # 0 = Sunday ... 6 = Saturday
    start_time: time
    end_time: time
    is_enabled: bool = True


class WindowResponse(BaseModel):
    id: int
    provider_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_enabled: bool

    class Config:
        from_attributes = True
