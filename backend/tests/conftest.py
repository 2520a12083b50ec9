import os
import tempfile
import time
import uuid

# must be in place before backend.replai reads its settings
_tmp = tempfile.mkdtemp(prefix="replai-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp}/app.db"
os.environ["EMAIL_AUTO_RECONNECT"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["GOOGLE_CLIENT_ID"] = "client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "client-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_dummy"
os.environ["STRIPE_PRICE_PRO_MONTHLY"] = "price_pro_monthly"
os.environ["STRIPE_PRICE_BUSINESS"] = "price_business"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LLM_PROVIDER"] = "gemini"
os.environ["GOOGLE_API_KEY"] = ""
os.environ["GENERATIVE_AI_API_KEY"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from backend.replai.db.database import init_db, SessionLocal
from backend.replai.models.user_model import User
from backend.replai.models.account_model import ConnectedAccount
from backend.replai.services.email_parser import encode_base64url
from backend.replai.services.reply_composer import ReplyComposer
from backend.replai.security.auth import create_access_token
from backend.replai.core.errors import ProviderError


def gmail_message(message_id, from_, subject="Hello", body="Hi there", to="me@example.com",
                  extra_headers=None, html=None, thread_id=None):
    headers = [{"name": "From", "value": from_}, {"name": "To", "value": to},
               {"name": "Date", "value": "Mon, 12 Oct 2026 09:00:00 +0000"}]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    headers += extra_headers or []
    parts = [{"mimeType": "text/plain", "body": {"data": encode_base64url(body)}}]
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": encode_base64url(html)}})
    return {
        "id": message_id,
        "threadId": thread_id or f"t-{message_id}",
        "labelIds": ["UNREAD", "INBOX"],
        "snippet": body[:50],
        "payload": {"mimeType": "multipart/alternative", "headers": headers, "parts": parts},
    }


class FakeProvider:
    """In-memory mailbox with the MailboxProvider surface."""
    name = "fake"

    def __init__(self, messages=None, fail_send_for=(), fail_list=False):
        self.messages = {m["id"]: m for m in (messages or [])}
        self.read = set()
        self.sent = []
        self.fail_send_for = set(fail_send_for)
        self.fail_list = fail_list
        self.list_calls = 0
        self.closed = 0

    def list_unread(self, limit):
        self.list_calls += 1
        if self.fail_list:
            raise ProviderError("list failed", provider=self.name)
        return [mid for mid in self.messages if mid not in self.read][:limit]

    def get_message(self, message_id):
        return self.messages[message_id]

    def send(self, reply):
        if reply.thread_id and reply.thread_id.replace("t-", "") in self.fail_send_for:
            raise ProviderError("send failed", provider=self.name)
        self.sent.append(reply)
        return f"sent-{len(self.sent)}"

    def mark_read(self, message_id):
        self.read.add(message_id)

    def token_state(self):
        return None

    def close(self):
        self.closed += 1


class FakeGenerator:
    def __init__(self, text="Thanks, will do.\nBest regards, Sam", fail=False):
        self.text = text
        self.fail = fail
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("model down")
        return self.text


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path}/poller.db", connect_args={"check_same_thread": False})
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def _unique(prefix="user"):
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


def make_user(session, plan="pro_monthly", name="Sam", sent=0):
    user = User(email=_unique(), name=name, subscription_plan=plan, emails_sent_count=sent)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_account(session, user, address=None, provider="google", paused=False):
    account = ConnectedAccount(user_id=user.id, provider=provider, email_address=address or _unique("box"),
                               access_token="tok", refresh_token="ref", sync_paused=paused,
                               status="paused" if paused else "active")
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


@pytest.fixture
def client():
    from backend.replai.main import app
    with TestClient(app) as c:
        yield c


def wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture
def fake_mailbox(client):
    """Point the app's poller at an in-memory mailbox and a canned generator."""
    def _install(messages=None, generator=None, **kw):
        provider = FakeProvider(messages, **kw)
        poller = client.app.state.poller
        poller.provider_factory = lambda account: provider
        poller.composer = ReplyComposer(generator or FakeGenerator())
        poller.interval = 3600
        return provider
    return _install


@pytest.fixture
def app_user():
    """User stored in the app database plus matching auth headers."""
    def _make(plan="pro_monthly", name="Sam"):
        session = SessionLocal()
        try:
            user = make_user(session, plan=plan, name=name)
            session.expunge(user)
        finally:
            session.close()
        return user, {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _make
