from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ..db.database import get_db
from ..models.user_model import User
from ..security.auth import get_current_user
from ..services.analytics import analytics_summary
from ..services.generative_text import ai_diagnostics, test_llm

router = APIRouter()


@router.get("/summary")
def summary(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return analytics_summary(db, user.id)


@router.get("/ai")
def ai_status(user: User = Depends(get_current_user)):
    return ai_diagnostics()


@router.get("/ai/test")
def ai_test(user: User = Depends(get_current_user)):
    # live probe against the configured provider
    return test_llm()
