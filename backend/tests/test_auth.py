from urllib.parse import urlparse, parse_qs

import pytest

from backend.replai.core.errors import AuthenticationError, ValidationError
from backend.replai.security.auth import (
    create_access_token, decode_access_token, create_oauth_state, verify_oauth_state,
)
from backend.replai.services import google_oauth
from conftest import FakeProvider


def test_access_token_round_trip():
    assert decode_access_token(create_access_token(42)) == 42
    with pytest.raises(AuthenticationError):
        decode_access_token(create_access_token(42, expires_minutes=-1))
    with pytest.raises(AuthenticationError):
        decode_access_token("not-a-token")


def test_oauth_state_is_not_an_access_token():
    state = create_oauth_state(7)
    assert verify_oauth_state(state) == 7
    with pytest.raises(AuthenticationError):
        decode_access_token(state)
    with pytest.raises(ValidationError):
        verify_oauth_state(create_access_token(7))
    with pytest.raises(ValidationError):
        verify_oauth_state(None)


def test_routes_require_bearer_token(client):
    r = client.get('/api/emails/connected')
    assert r.status_code == 401
    assert r.json() == {"error": "Authentication required"}
    r = client.get('/api/user/usage', headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401
    r = client.get('/api/blocklist', headers={"Authorization": f"Bearer {create_access_token(999999)}"})
    assert r.json() == {"error": "User not found"}


def test_google_auth_url_carries_signed_state(client, app_user):
    user, headers = app_user()
    r = client.get('/api/emails/auth/google', headers=headers)
    assert r.status_code == 200
    url = urlparse(r.json()['authUrl'])
    assert url.netloc == 'accounts.google.com'
    query = parse_qs(url.query)
    assert query['access_type'] == ['offline']
    assert verify_oauth_state(query['state'][0]) == user.id

    _, free = app_user(plan='free')
    assert client.get('/api/emails/auth/google', headers=free).status_code == 403


def test_google_callback_links_mailbox(client, app_user, monkeypatch):
    user, headers = app_user()
    client.app.state.poller.provider_factory = lambda account: FakeProvider()
    client.app.state.poller.interval = 3600
    monkeypatch.setattr(google_oauth, 'exchange_code', lambda code: object())
    monkeypatch.setattr(google_oauth, 'fetch_profile', lambda creds: {"email": "Me@Gmail.com", "name": "Sam"})
    monkeypatch.setattr(google_oauth, 'account_fields',
                        lambda creds, profile: {"access_token": "a", "refresh_token": "r", "display_name": "Sam"})

    state = create_oauth_state(user.id)
    r = client.get(f'/api/emails/auth/google/callback?code=abc&state={state}', follow_redirects=False)
    assert r.status_code == 302
    assert r.headers['location'].endswith('?connected=me%40gmail.com')
    listed = client.get('/api/emails/connected', headers=headers).json()
    assert [(a['provider'], a['email_address']) for a in listed] == [("google", "me@gmail.com")]

    denied = client.get(f'/api/emails/auth/google/callback?error=access_denied&state={state}', follow_redirects=False)
    assert denied.headers['location'].endswith('?error=access_denied')
    assert client.get('/api/emails/auth/google/callback?code=abc&state=forged', follow_redirects=False).status_code == 400
