"""Google consent flow for Gmail + Calendar access."""
from typing import Dict
import logging

from google_auth_oauthlib.flow import Flow
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..core.config import get_settings
from ..core.errors import ProviderError, ValidationError

SCOPES = [
    'https://www.googleapis.com/auth/gmail.readonly',
    'https://www.googleapis.com/auth/gmail.send',
    'https://www.googleapis.com/auth/gmail.modify',
    'https://www.googleapis.com/auth/calendar.events',
    'https://www.googleapis.com/auth/userinfo.email',
    'https://www.googleapis.com/auth/userinfo.profile',
    'openid',
]

log = logging.getLogger(__name__)


def _flow() -> Flow:
    s = get_settings()
    if not (s.google_client_id and s.google_client_secret):
        raise ValidationError('Google OAuth is not configured')
    client_config = {
        'web': {
            'client_id': s.google_client_id,
            'client_secret': s.google_client_secret,
            'auth_uri': 'https://accounts.google.com/o/oauth2/auth',
            'token_uri': 'https://oauth2.googleapis.com/token',
            'redirect_uris': [s.google_redirect_uri],
        }
    }
    # the callback builds a fresh Flow, so no PKCE verifier survives between the two
    return Flow.from_client_config(client_config, scopes=SCOPES, redirect_uri=s.google_redirect_uri,
                                   autogenerate_code_verifier=False)


def authorization_url(state: str) -> str:
    url, _ = _flow().authorization_url(
        access_type='offline',  # refresh token
        include_granted_scopes='true',
        prompt='consent',
        state=state,
    )
    return url


def exchange_code(code: str) -> Credentials:
    flow = _flow()
    try:
        flow.fetch_token(code=code)
    except Exception as e:  # oauthlib raises a family of unrelated error types
        log.warning("oauth_exchange_failed", extra={"provider": "google", "error_type": type(e).__name__})
        raise ProviderError(f'Google token exchange failed: {e}', provider='google') from e
    return flow.credentials


def fetch_profile(credentials: Credentials) -> Dict[str, str]:
    try:
        info = build('oauth2', 'v2', credentials=credentials, cache_discovery=False).userinfo().get().execute()
    except HttpError as e:
        raise ProviderError('Could not read Google profile', provider='google') from e
    if not info.get('email'):
        raise ProviderError('Google profile has no email address', provider='google')
    return {'email': info['email'], 'name': info.get('name', '')}


def account_fields(credentials: Credentials, profile: Dict[str, str]) -> Dict:
    return {
        'access_token': credentials.token,
        'refresh_token': credentials.refresh_token,
        'token_expiry': credentials.expiry,
        'display_name': profile.get('name', ''),
    }
