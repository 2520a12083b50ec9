from fastapi import APIRouter, Depends, Header, Request
from typing import Optional
from sqlalchemy.orm import Session
from ..db.database import get_db
from ..models.user_model import User
from ..schemas.account import CheckoutIn
from ..security.auth import get_current_user
from ..services import billing

router = APIRouter()


@router.post("/checkout")
def checkout(payload: CheckoutIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return billing.create_checkout_session(db, user, payload.plan, payload.success_url, payload.cancel_url)


@router.post("/webhook")
async def webhook(request: Request, stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
                  db: Session = Depends(get_db)):
    """Stripe calls this directly; the signature header is the only credential."""
    payload = await request.body()
    event = billing.construct_event(payload, stripe_signature)
    return billing.handle_event(db, event)
