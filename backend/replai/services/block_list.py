from typing import Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from ..models.user_model import BlockListEntry
from ..core.errors import ValidationError, NotFoundError
from .email_parser import parse_address


def normalize_entry(entry: Optional[str]) -> str:
    value = (entry or '').strip().lower()
    if value.startswith('@'):
        value = value[1:]
    return value


def is_blocked(from_address: Optional[str], entries: Optional[Iterable[str]]) -> bool:
    """True when the sender address, its domain or a parent domain is listed."""
    if not from_address or not entries:
        return False
    sender = parse_address(from_address)['email'].strip().lower()
    if not sender:
        return False
    domain = sender.rsplit('@', 1)[1] if '@' in sender else ''
    for raw in entries:
        blocked = normalize_entry(raw)
        if not blocked:
            continue
        if sender == blocked:
            return True
        if domain and (domain == blocked or domain.endswith('.' + blocked)):
            return True
    return False


def list_entries(db: Session, user_id: int) -> List[str]:
    rows = db.query(BlockListEntry).filter(BlockListEntry.user_id == user_id).order_by(BlockListEntry.id).all()
    return [r.entry for r in rows]


def add_entry(db: Session, user_id: int, entry: str) -> List[str]:
    value = normalize_entry(entry)
    if not value:
        raise ValidationError('Block list entry is required')
    exists = db.query(BlockListEntry).filter(BlockListEntry.user_id == user_id, BlockListEntry.entry == value).first()
    if exists:
        raise ValidationError(f"'{value}' is already blocked", entry=value)
    db.add(BlockListEntry(user_id=user_id, entry=value))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(f"'{value}' is already blocked", entry=value)
    return list_entries(db, user_id)


def remove_entry(db: Session, user_id: int, entry: str) -> List[str]:
    value = normalize_entry(entry)
    removed = db.query(BlockListEntry).filter(BlockListEntry.user_id == user_id, BlockListEntry.entry == value).delete()
    if not removed:
        raise NotFoundError(f"'{value}' is not on the block list", entry=value)
    db.commit()
    return list_entries(db, user_id)
