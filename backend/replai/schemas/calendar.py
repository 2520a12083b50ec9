from pydantic import BaseModel, EmailStr
from typing import Optional, List


class EventIn(BaseModel):
    title: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    all_day: bool = False
    time_zone: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    attendees: List[EmailStr] = []
    notify_attendees: bool = False
