from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from ..core.config import get_settings
from ..core.errors import AuthenticationError, ValidationError
from ..db.database import get_db
from ..models.user_model import User

ALGORITHM = 'HS256'
OAUTH_STATE_MINUTES = 10

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    s = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        'sub': str(user_id),
        'iat': now,
        'exp': now + timedelta(minutes=expires_minutes or s.jwt_expires_minutes),
    }
    return jwt.encode(payload, s.jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> int:
    try:
        payload = jwt.decode(token, get_settings().jwt_secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError('Token expired')
    except jwt.InvalidTokenError:
        raise AuthenticationError('Invalid token')
    if payload.get('purpose'):
        raise AuthenticationError('Invalid token')
    try:
        return int(payload['sub'])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError('Invalid token')


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
                     db: Session = Depends(get_db)) -> User:
    """Resolve the bearer token to a user; every protected route depends on this."""
    if credentials is None or (credentials.scheme or '').lower() != 'bearer':
        raise AuthenticationError('Authentication required')
    user = db.get(User, decode_access_token(credentials.credentials))
    if user is None:
        raise AuthenticationError('User not found')
    return user


def create_oauth_state(user_id: int) -> str:
    """Signed, short-lived ``state`` carried through the Google consent screen."""
    now = datetime.now(timezone.utc)
    payload = {'sub': str(user_id), 'purpose': 'oauth_state', 'iat': now,
               'exp': now + timedelta(minutes=OAUTH_STATE_MINUTES)}
    return jwt.encode(payload, get_settings().jwt_secret, algorithm=ALGORITHM)


def verify_oauth_state(state: Optional[str]) -> int:
    if not state:
        raise ValidationError('Missing OAuth state')
    try:
        payload = jwt.decode(state, get_settings().jwt_secret, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        raise ValidationError('Invalid or expired OAuth state')
    if payload.get('purpose') != 'oauth_state':
        raise ValidationError('Invalid or expired OAuth state')
    return int(payload['sub'])
