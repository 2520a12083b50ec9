from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ..db.database import get_db
from ..models.user_model import User, PromptSetting
from ..schemas.email import PromptIn, PromptOut
from ..security.auth import get_current_user

router = APIRouter()


def _out(setting) -> PromptOut:
    if setting is None:
        return PromptOut()
    return PromptOut(text=setting.text or '', file_data=setting.file_data,
                     using_default=not setting.instructions.strip())


@router.get("/prompt", response_model=PromptOut)
def get_prompt(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _out(db.query(PromptSetting).filter(PromptSetting.user_id == user.id).first())


@router.put("/prompt", response_model=PromptOut)
def save_prompt(payload: PromptIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Custom instructions replace the built-in reply prompt entirely."""
    setting = db.query(PromptSetting).filter(PromptSetting.user_id == user.id).first()
    if setting is None:
        setting = PromptSetting(user_id=user.id)
        db.add(setting)
    setting.text = payload.text
    setting.file_data = payload.file_data
    db.commit()
    db.refresh(setting)
    return _out(setting)


@router.delete("/prompt", response_model=PromptOut)
def reset_prompt(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db.query(PromptSetting).filter(PromptSetting.user_id == user.id).delete()
    db.commit()
    return PromptOut()
