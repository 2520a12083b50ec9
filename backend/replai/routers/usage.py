from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ..db.database import get_db
from ..models.user_model import User
from ..security.auth import get_current_user
from ..services.analytics import usage_summary

router = APIRouter()


@router.get("/usage")
def usage(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return usage_summary(db, user)
