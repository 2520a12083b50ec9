from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from typing import Dict, List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
import logging

from ..models.email_model import InboundMessage, SentReply
from ..models.user_model import User
from ..models.account_model import ConnectedAccount
from ..core.errors import NotFoundError, PersistenceError
from .classifier import CATEGORIES

log = logging.getLogger(__name__)

UNLIMITED = float('inf')
# plan -> (emails per account lifetime, connected accounts)
PLAN_LIMITS = {
    'free': (0, 0),
    'pro_monthly': (1000, 2),
    'pro_yearly': (1000, 2),
    'business': (UNLIMITED, UNLIMITED),
}
STATUSES = ('pending', 'processing', 'processed', 'failed', 'skipped')
SENTIMENTS = ('positive', 'neutral', 'negative')


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_received(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parsedate_to_datetime(value)
            if dt:
                return dt
        except (TypeError, ValueError):
            pass
    return _now()


def plan_limits(plan: Optional[str]) -> Tuple[float, float]:
    return PLAN_LIMITS.get(plan or 'free', PLAN_LIMITS['free'])


def _usage_block(used: int, limit: float) -> Dict:
    if limit == UNLIMITED:
        return {'used': used, 'total': 'Unlimited', 'percentage': 0}
    if limit <= 0:
        return {'used': used, 'total': 0, 'percentage': 100 if used else 0}
    return {'used': used, 'total': int(limit), 'percentage': round(min(100.0, used / limit * 100), 1)}


def usage_summary(db: Session, user: User) -> Dict:
    email_limit, account_limit = plan_limits(user.subscription_plan)
    accounts = db.query(ConnectedAccount).filter(ConnectedAccount.user_id == user.id).count()
    return {
        'plan': user.subscription_plan or 'free',
        'emails': _usage_block(user.emails_sent_count or 0, email_limit),
        'accounts': _usage_block(accounts, account_limit),
    }


def can_send(user: User) -> bool:
    email_limit, _ = plan_limits(user.subscription_plan)
    return (user.emails_sent_count or 0) < email_limit


def can_connect(db: Session, user: User) -> bool:
    _, account_limit = plan_limits(user.subscription_plan)
    used = db.query(ConnectedAccount).filter(ConnectedAccount.user_id == user.id).count()
    return used < account_limit


def _log_entry(status: str, message: str) -> Dict:
    return {'timestamp': _now().isoformat(), 'status': status, 'message': message}


def record_inbound(db: Session, account: ConnectedAccount, extracted, classification: Dict) -> InboundMessage:
    """Store a newly seen message; a message already on file is returned as-is."""
    existing = db.query(InboundMessage).filter(
        InboundMessage.account_id == account.id,
        InboundMessage.provider_message_id == extracted.message_id,
    ).first()
    if existing:
        return existing
    sender = extracted.sender
    row = InboundMessage(
        user_id=account.user_id,
        account_id=account.id,
        provider_message_id=extracted.message_id,
        thread_id=extracted.thread_id,
        subject=extracted.subject,
        snippet=extracted.snippet,
        body_text=extracted.plain_body,
        body_html=extracted.html_body,
        from_name=sender['name'],
        from_email=sender['email'].lower(),
        to=extracted.to,
        received_at=_coerce_received(extracted.date),
        category=classification.get('category'),
        sentiment=classification.get('sentiment'),
        is_urgent=bool(classification.get('is_urgent')),
        is_bulk=bool(classification.get('is_bulk')),
        priority=classification.get('priority', 3),
        processed=False,
        processing_status='pending',
        processing_log=[_log_entry('pending', 'Message received')],
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # another tick stored it first
        db.rollback()
        return db.query(InboundMessage).filter(
            InboundMessage.account_id == account.id,
            InboundMessage.provider_message_id == extracted.message_id,
        ).one()
    db.refresh(row)
    return row


def append_log(db: Session, inbound: InboundMessage, status: str, message: str,
               repeat: bool = True) -> InboundMessage:
    """Append a status entry. With repeat=False an identical latest entry is left alone."""
    if not repeat and inbound.processing_status == status:
        last = (inbound.processing_log or [{}])[-1]
        if last.get('message') == message:
            return inbound
    # reassign so the JSON column is flagged dirty
    inbound.processing_log = list(inbound.processing_log or []) + [_log_entry(status, message)]
    inbound.processing_status = status
    db.commit()
    return inbound


def mark_processed(db: Session, inbound: InboundMessage, message: str = 'Reply sent') -> InboundMessage:
    inbound.processed = True
    inbound.processed_at = _now()
    return append_log(db, inbound, 'processed', message)


def record_sent(db: Session, account: ConnectedAccount, inbound: InboundMessage, composed,
                response_time_ms: int, provider_message_id: Optional[str] = None) -> SentReply:
    reply = SentReply(
        user_id=account.user_id,
        account_id=account.id,
        from_address=account.email_address,
        to=composed.to,
        subject=composed.subject,
        body=composed.response_text,
        thread_id=composed.thread_id,
        provider_message_id=provider_message_id,
        reply_to_message_id=inbound.provider_message_id,
        response_time_ms=int(response_time_ms),
        category=inbound.category,
        sentiment=inbound.sentiment,
        auto_generated=True,
        is_reply=True,
    )
    db.add(reply)
    user = db.get(User, account.user_id)
    if user is not None:
        user.emails_sent_count = (user.emails_sent_count or 0) + 1
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        raise PersistenceError(f'Could not record sent reply: {e}', message_id=inbound.provider_message_id) from e
    db.refresh(reply)
    return reply


def list_inbound(db: Session, user_id: int, account_id: Optional[int] = None, status: Optional[str] = None,
                 category: Optional[str] = None, limit: int = 50, offset: int = 0) -> Tuple[List[InboundMessage], int]:
    q = db.query(InboundMessage).filter(InboundMessage.user_id == user_id)
    if account_id is not None:
        q = q.filter(InboundMessage.account_id == account_id)
    if status:
        q = q.filter(InboundMessage.processing_status == status)
    if category:
        q = q.filter(InboundMessage.category == category)
    total = q.count()
    items = q.order_by(InboundMessage.received_at.desc(), InboundMessage.id.desc()).offset(offset).limit(limit).all()
    return items, total


def get_inbound(db: Session, user_id: int, inbound_id: int) -> InboundMessage:
    row = db.query(InboundMessage).filter(InboundMessage.id == inbound_id, InboundMessage.user_id == user_id).first()
    if row is None:
        raise NotFoundError('Message not found', id=inbound_id)
    return row


def list_sent(db: Session, user_id: int, limit: int = 50, offset: int = 0) -> Tuple[List[SentReply], int]:
    q = db.query(SentReply).filter(SentReply.user_id == user_id)
    total = q.count()
    items = q.order_by(SentReply.sent_at.desc(), SentReply.id.desc()).offset(offset).limit(limit).all()
    return items, total


def analytics_summary(db: Session, user_id: int) -> Dict:
    base = db.query(InboundMessage).filter(InboundMessage.user_id == user_id)
    total = base.count()
    last_24 = base.filter(InboundMessage.created_at >= _now() - timedelta(hours=24)).count()
    by_category = {c: base.filter(InboundMessage.category == c).count() for c in CATEGORIES}
    by_sentiment = {s: base.filter(InboundMessage.sentiment == s).count() for s in SENTIMENTS}
    by_status = {s: base.filter(InboundMessage.processing_status == s).count() for s in STATUSES}
    sent = db.query(SentReply).filter(SentReply.user_id == user_id)
    avg_ms = sent.with_entities(func.avg(SentReply.response_time_ms)).scalar()
    return {
        'total': total,
        'last_24h': last_24,
        'category': by_category,
        'sentiment': by_sentiment,
        'processed': by_status['processed'],
        'pending': by_status['pending'] + by_status['processing'],
        'skipped': by_status['skipped'],
        'failed': by_status['failed'],
        'replies_sent': sent.count(),
        'avg_response_time_ms': round(float(avg_ms), 1) if avg_ms is not None else None,
    }
