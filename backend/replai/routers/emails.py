from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from typing import Optional
from urllib.parse import urlencode
from sqlalchemy.orm import Session
import logging

from ..core.config import get_settings
from ..core.errors import PermissionDeniedError, ReplaiError
from ..core.events import broadcaster
from ..db.database import get_db
from ..models.user_model import User
from ..schemas.account import ConnectedAccountOut, CustomConnectIn, DisconnectIn
from ..schemas.email import InboundOut, InboundDetail, SentReplyOut
from ..security.auth import get_current_user, create_oauth_state, verify_oauth_state
from ..services import connection_registry as registry
from ..services import google_oauth
from ..services.analytics import can_connect, list_inbound, get_inbound, list_sent
from ..services.classifier import deep_sentiment
from ..services.mailbox_poller import MailboxPoller

router = APIRouter()
log = logging.getLogger(__name__)


def get_poller(request: Request) -> MailboxPoller:
    return request.app.state.poller


def _require_connect_allowance(db: Session, user: User):
    if (user.subscription_plan or 'free') == 'free':
        raise PermissionDeniedError('subscription_required')
    if not can_connect(db, user):
        raise PermissionDeniedError('account_limit_reached')


def _dashboard_redirect(**params) -> RedirectResponse:
    return RedirectResponse(f"{get_settings().dashboard_url}?{urlencode(params)}", status_code=302)


@router.get("/auth/google")
def google_auth_url(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_connect_allowance(db, user)
    return {"authUrl": google_oauth.authorization_url(create_oauth_state(user.id))}


@router.get("/auth/google/callback")
def google_auth_callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None,
                         db: Session = Depends(get_db), poller: MailboxPoller = Depends(get_poller)):
    """Consent-screen redirect target; no bearer token, the signed state identifies the user."""
    user_id = verify_oauth_state(state)
    if error or not code:
        return _dashboard_redirect(error=error or 'missing_code')
    try:
        credentials = google_oauth.exchange_code(code)
        profile = google_oauth.fetch_profile(credentials)
        account = registry.upsert_account(db, user_id, 'google', profile['email'],
                                          **google_oauth.account_fields(credentials, profile))
    except ReplaiError as e:
        log.warning("oauth_callback_failed", extra={"user_id": user_id, "error_type": type(e).__name__})
        return _dashboard_redirect(error=e.message)
    if not account.sync_paused:
        poller.start(account)
    broadcaster.publish("mailbox_connected", {"mailbox": account.email_address, "provider": "google"})
    return _dashboard_redirect(connected=account.email_address)


@router.post("/connect/custom", response_model=ConnectedAccountOut)
def connect_custom(payload: CustomConnectIn, user: User = Depends(get_current_user), db: Session = Depends(get_db),
                   poller: MailboxPoller = Depends(get_poller)):
    if registry.find_account(db, user.id, payload.email, 'custom') is None:
        _require_connect_allowance(db, user)
    account = registry.upsert_account(
        db, user.id, 'custom', payload.email,
        imap_host=payload.imap_host, smtp_host=payload.smtp_host, smtp_port=payload.smtp_port,
        username=payload.username or payload.email, password=payload.password,
    )
    if not account.sync_paused:
        poller.start(account)
    broadcaster.publish("mailbox_connected", {"mailbox": account.email_address, "provider": "custom"})
    return account


@router.post("/disconnect")
def disconnect(payload: DisconnectIn, user: User = Depends(get_current_user), db: Session = Depends(get_db),
               poller: MailboxPoller = Depends(get_poller)):
    removed = registry.remove_accounts(db, user.id, payload.email)
    # other users may link the same address; only this user's workers stop
    poller.stop_keys([r['key'] for r in removed])
    broadcaster.publish("mailbox_disconnected", {"mailbox": payload.email})
    return {"message": f"Disconnected {payload.email}", "removed": len(removed)}


@router.get("/connected", response_model=list[ConnectedAccountOut])
def connected(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return registry.list_accounts(db, user.id)


@router.post("/connected/{account_id}/pause", response_model=ConnectedAccountOut)
def pause_sync(account_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    # the worker stays registered and skips ticks while paused
    return registry.set_paused(db, registry.get_account(db, account_id, user.id), True)


@router.post("/connected/{account_id}/resume", response_model=ConnectedAccountOut)
def resume_sync(account_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db),
                poller: MailboxPoller = Depends(get_poller)):
    account = registry.set_paused(db, registry.get_account(db, account_id, user.id), False)
    poller.start(account)
    return account


@router.post("/connected/{account_id}/run-once")
def run_once(account_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db),
             poller: MailboxPoller = Depends(get_poller)):
    """Trigger a single immediate tick for one mailbox."""
    registry.get_account(db, account_id, user.id)
    return poller.run_once(account_id)


@router.get("/inbound")
def inbound(account_id: Optional[int] = Query(None), status: Optional[str] = Query(None),
            category: Optional[str] = Query(None), limit: int = Query(50, ge=1, le=500), offset: int = Query(0, ge=0),
            user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    records, total = list_inbound(db, user.id, account_id=account_id, status=status, category=category,
                                  limit=limit, offset=offset)
    items = [InboundOut.model_validate(r).model_dump() for r in records]
    return {"total": total, "count": len(items), "items": items, "limit": limit, "offset": offset}


@router.get("/inbound/{inbound_id}", response_model=InboundDetail)
def inbound_detail(inbound_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_inbound(db, user.id, inbound_id)


@router.get("/inbound/{inbound_id}/sentiment")
def inbound_sentiment(inbound_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    record = get_inbound(db, user.id, inbound_id)
    return {"id": record.id, **deep_sentiment(f"{record.subject}\n{record.body_text or ''}")}


@router.get("/sent")
def sent(limit: int = Query(50, ge=1, le=500), offset: int = Query(0, ge=0),
         user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    records, total = list_sent(db, user.id, limit=limit, offset=offset)
    items = [SentReplyOut.model_validate(r).model_dump() for r in records]
    return {"total": total, "count": len(items), "items": items, "limit": limit, "offset": offset}


@router.get("/poller/status")
def poller_status(user: User = Depends(get_current_user), db: Session = Depends(get_db),
                  poller: MailboxPoller = Depends(get_poller)):
    return poller.status([a.email_address for a in registry.list_accounts(db, user.id)])
