"""Linked mailboxes per user; the source of truth for "still connected"."""
from datetime import datetime, timezone
from typing import Dict, List, Optional
import logging
from sqlalchemy.orm import Session
from ..models.account_model import ConnectedAccount, PROVIDERS
from ..core.errors import NotConnectedError, SyncPausedError, ValidationError

log = logging.getLogger(__name__)


def upsert_account(db: Session, user_id: int, provider: str, email_address: str, **fields) -> ConnectedAccount:
    """Create the account or refresh its tokens/credentials when already linked."""
    provider = (provider or '').lower()
    if provider not in PROVIDERS:
        raise ValidationError(f"Unknown provider '{provider}'", provider=provider)
    address = (email_address or '').strip().lower()
    if not address:
        raise ValidationError('Email address is required')
    account = find_account(db, user_id, address, provider)
    if account is None:
        account = ConnectedAccount(user_id=user_id, provider=provider, email_address=address)
        db.add(account)
    for key, value in fields.items():
        # a callback without a refresh token must not erase the stored one
        if key == 'refresh_token' and not value:
            continue
        setattr(account, key, value)
    account.status = 'paused' if account.sync_paused else 'active'
    account.last_error = None
    db.commit()
    db.refresh(account)
    log.info("mailbox_connected", extra={"user_id": user_id, "mailbox": address, "provider": provider})
    return account


def find_account(db: Session, user_id: int, email_address: str, provider: Optional[str] = None) -> Optional[ConnectedAccount]:
    q = db.query(ConnectedAccount).filter(
        ConnectedAccount.user_id == user_id,
        ConnectedAccount.email_address == email_address.strip().lower(),
    )
    if provider:
        q = q.filter(ConnectedAccount.provider == provider)
    return q.first()


def get_account(db: Session, account_id: int, user_id: Optional[int] = None) -> ConnectedAccount:
    q = db.query(ConnectedAccount).filter(ConnectedAccount.id == account_id)
    if user_id is not None:
        q = q.filter(ConnectedAccount.user_id == user_id)
    account = q.first()
    if account is None:
        raise NotConnectedError('Connected account not found', account_id=account_id)
    return account


def is_connected(db: Session, account_id: int) -> bool:
    return db.query(ConnectedAccount.id).filter(ConnectedAccount.id == account_id).first() is not None


def list_accounts(db: Session, user_id: Optional[int] = None, include_paused: bool = True) -> List[ConnectedAccount]:
    q = db.query(ConnectedAccount)
    if user_id is not None:
        q = q.filter(ConnectedAccount.user_id == user_id)
    if not include_paused:
        q = q.filter(ConnectedAccount.sync_paused.is_(False))
    return q.order_by(ConnectedAccount.id).all()


def count_accounts(db: Session, user_id: int) -> int:
    return db.query(ConnectedAccount).filter(ConnectedAccount.user_id == user_id).count()


def remove_accounts(db: Session, user_id: int, email_address: str) -> List[Dict]:
    """Delete every provider link for the address; returns what was removed."""
    rows = db.query(ConnectedAccount).filter(
        ConnectedAccount.user_id == user_id,
        ConnectedAccount.email_address == (email_address or '').strip().lower(),
    ).all()
    if not rows:
        raise NotConnectedError(f'{email_address} is not connected', mailbox=email_address)
    removed = [{'id': r.id, 'email': r.email_address, 'provider': r.provider, 'key': r.key} for r in rows]
    for r in rows:
        db.delete(r)
    db.commit()
    log.info("mailbox_disconnected", extra={"user_id": user_id, "mailbox": email_address})
    return removed


def set_paused(db: Session, account: ConnectedAccount, paused: bool) -> ConnectedAccount:
    if paused and account.sync_paused:
        raise SyncPausedError('Sync is already paused', mailbox=account.email_address)
    if not paused and not account.sync_paused:
        raise SyncPausedError('Sync is already active', mailbox=account.email_address)
    account.sync_paused = paused
    account.status = 'paused' if paused else 'active'
    db.commit()
    db.refresh(account)
    return account


def update_tokens(db: Session, account: ConnectedAccount, access_token: str, refresh_token: Optional[str], token_expiry) -> None:
    account.access_token = access_token
    if refresh_token:
        account.refresh_token = refresh_token
    account.token_expiry = token_expiry
    db.commit()


def record_sync(db: Session, account: ConnectedAccount, error: Optional[str] = None) -> None:
    account.last_sync_at = datetime.now(timezone.utc)
    account.last_error = error
    if error:
        account.status = 'error'
    elif not account.sync_paused:
        account.status = 'active'
    db.commit()
