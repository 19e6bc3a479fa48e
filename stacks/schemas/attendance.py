from pydantic import BaseModel
from typing import Optional
from datetime import datetime
import enum

class AttendanceAction(str, enum.Enum):
    CHECKED_IN = 'CheckedIn'
    CHECKED_OUT = 'CheckedOut'

class AttendanceEntry(BaseModel):
    id: int
    student_id: str
    entry_timestamp: datetime
    exit_timestamp: Optional[datetime] = None

    class Config:
        from_attributes = True

class ToggleOutcome(BaseModel):
    action: AttendanceAction
    student_id: str
    student_name: str
    new_occupancy: int
    max_capacity: Optional[int] = None

class OccupancyStatus(BaseModel):
    count: int
    max_capacity: int
