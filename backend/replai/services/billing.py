"""Stripe subscription checkout and webhook handling."""
from datetime import datetime, timezone
from typing import Dict, Optional
import logging

import stripe
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.errors import ProviderError, ValidationError
from ..models.user_model import User, PAID_PLANS

log = logging.getLogger(__name__)


def _field(obj, key, default=None):
    # Stripe objects and plain dicts both support item access
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def plan_for_price(price_id: Optional[str]) -> Optional[str]:
    for plan, price in get_settings().stripe_prices.items():
        if price and price == price_id:
            return plan
    return None


def _configure() -> None:
    s = get_settings()
    if not s.stripe_secret_key:
        raise ValidationError('Payments are not configured')
    stripe.api_key = s.stripe_secret_key


def create_checkout_session(db: Session, user: User, plan: str, success_url: Optional[str] = None,
                            cancel_url: Optional[str] = None) -> Dict[str, str]:
    if plan not in PAID_PLANS:
        raise ValidationError(f"Unknown plan '{plan}'", plan=plan)
    s = get_settings()
    price = s.stripe_prices.get(plan)
    if not price:
        raise ValidationError(f"No price configured for plan '{plan}'", plan=plan)
    _configure()
    try:
        if not user.stripe_customer_id:
            customer = stripe.Customer.create(email=user.email, name=user.name or None,
                                              metadata={'user_id': str(user.id)})
            user.stripe_customer_id = customer['id']
            db.commit()
        session = stripe.checkout.Session.create(
            customer=user.stripe_customer_id,
            mode='subscription',
            line_items=[{'price': price, 'quantity': 1}],
            success_url=success_url or f"{s.dashboard_url}?billing=success",
            cancel_url=cancel_url or f"{s.dashboard_url}?billing=canceled",
            client_reference_id=str(user.id),
            metadata={'user_id': str(user.id), 'plan': plan},
        )
    except stripe.StripeError as e:
        log.exception("checkout_failed", extra={"user_id": user.id})
        raise ProviderError(f'Stripe checkout failed: {e}', provider='stripe') from e
    log.info("checkout_created", extra={"user_id": user.id})
    return {'sessionId': session['id'], 'url': session['url']}


def construct_event(payload: bytes, signature: Optional[str]):
    secret = get_settings().stripe_webhook_secret
    if not secret:
        raise ValidationError('Webhook secret is not configured')
    try:
        return stripe.Webhook.construct_event(payload, signature or '', secret)
    except ValueError:
        raise ValidationError('Invalid payload')
    except stripe.SignatureVerificationError:
        raise ValidationError('Invalid signature')


def _user_for(db: Session, obj) -> Optional[User]:
    user_id = _field(_field(obj, 'metadata', {}), 'user_id') or _field(obj, 'client_reference_id')
    if user_id:
        user = db.get(User, int(user_id))
        if user is not None:
            return user
    customer = _field(obj, 'customer')
    if customer:
        return db.query(User).filter(User.stripe_customer_id == customer).first()
    return None


def _subscription_plan(subscription) -> Optional[str]:
    items = _field(_field(subscription, 'items', {}), 'data', [])
    if not items:
        return None
    return plan_for_price(_field(_field(items[0], 'price', {}), 'id'))


def handle_event(db: Session, event) -> Dict:
    event_type = _field(event, 'type')
    obj = _field(_field(event, 'data', {}), 'object', {})
    user = _user_for(db, obj)
    if user is None:
        log.warning("webhook_user_not_found", extra={"event": event_type})
        return {'received': True, 'type': event_type, 'handled': False}

    handled = True
    if event_type == 'checkout.session.completed':
        plan = _field(_field(obj, 'metadata', {}), 'plan')
        if plan in PAID_PLANS:
            user.subscription_plan = plan
            user.subscription_started_at = datetime.now(timezone.utc)
        if _field(obj, 'customer'):
            user.stripe_customer_id = _field(obj, 'customer')
    elif event_type == 'customer.subscription.updated':
        status = _field(obj, 'status')
        plan = _subscription_plan(obj)
        if status in ('canceled', 'unpaid', 'incomplete_expired'):
            user.subscription_plan = 'free'
        elif plan:
            user.subscription_plan = plan
    elif event_type == 'customer.subscription.deleted':
        user.subscription_plan = 'free'
    elif event_type == 'invoice.paid':
        # a renewed billing period starts a fresh send allowance
        user.emails_sent_count = 0
    else:
        handled = False
    db.commit()
    log.info("webhook_processed", extra={"event": event_type, "user_id": user.id})
    return {'received': True, 'type': event_type, 'handled': handled}
