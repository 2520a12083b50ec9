from fastapi import APIRouter, Depends, Query
from typing import Optional
from sqlalchemy.orm import Session
from ..db.database import get_db
from ..models.user_model import User
from ..schemas.calendar import EventIn
from ..security.auth import get_current_user
from ..services.calendar_service import CalendarService, google_account

router = APIRouter()


def get_calendar(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> CalendarService:
    return CalendarService(db, google_account(db, user.id))


@router.get("/events")
def list_events(time_min: Optional[str] = Query(None, alias="timeMin"),
                time_max: Optional[str] = Query(None, alias="timeMax"),
                calendar: CalendarService = Depends(get_calendar)):
    items = calendar.list_events(time_min, time_max)
    return {"count": len(items), "items": items}


@router.post("/events", status_code=201)
def create_event(payload: EventIn, calendar: CalendarService = Depends(get_calendar)):
    return calendar.create_event(payload.model_dump())


@router.put("/events/{event_id}")
def update_event(event_id: str, payload: EventIn, calendar: CalendarService = Depends(get_calendar)):
    return calendar.update_event(event_id, payload.model_dump(exclude_unset=True))


@router.delete("/events/{event_id}")
def delete_event(event_id: str, calendar: CalendarService = Depends(get_calendar)):
    calendar.delete_event(event_id)
    return {"message": "Event deleted", "id": event_id}
