from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from ..db.database import get_db
from ..models.user_model import User
from ..schemas.email import BlockEntryIn
from ..security.auth import get_current_user
from ..services import block_list

router = APIRouter()


@router.get("")
def get_block_list(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"entries": block_list.list_entries(db, user.id)}


@router.post("", status_code=201)
def add_block_entry(payload: BlockEntryIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"entries": block_list.add_entry(db, user.id, payload.entry)}


@router.delete("")
def remove_block_entry(entry: str = Query(...), user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"entries": block_list.remove_entry(db, user.id, entry)}
