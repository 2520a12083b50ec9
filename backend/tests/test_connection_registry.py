import pytest

from backend.replai.core.errors import NotConnectedError, SyncPausedError, ValidationError
from backend.replai.services.connection_registry import (
    upsert_account, get_account, remove_accounts, set_paused, list_accounts, is_connected,
)
from conftest import make_user


def test_upsert_keeps_refresh_token(db):
    user = make_user(db)
    first = upsert_account(db, user.id, "google", "Me@Example.com", access_token="a1", refresh_token="r1")
    assert first.email_address == "me@example.com"
    again = upsert_account(db, user.id, "google", "me@example.com", access_token="a2", refresh_token=None)
    assert again.id == first.id
    assert (again.access_token, again.refresh_token) == ("a2", "r1")
    assert again.key == f"google:{user.id}:me@example.com"


def test_upsert_validates_input(db):
    user = make_user(db)
    with pytest.raises(ValidationError):
        upsert_account(db, user.id, "yahoo", "me@example.com")
    with pytest.raises(ValidationError):
        upsert_account(db, user.id, "google", " ")


def test_pause_and_resume_conflicts(db):
    user = make_user(db)
    account = upsert_account(db, user.id, "custom", "me@example.com", imap_host="imap.example.com")
    set_paused(db, account, True)
    assert account.status == "paused"
    assert list_accounts(db, include_paused=False) == []
    with pytest.raises(SyncPausedError):
        set_paused(db, account, True)
    set_paused(db, account, False)
    with pytest.raises(SyncPausedError):
        set_paused(db, account, False)


def test_remove_every_provider_link(db):
    user = make_user(db)
    google_id = upsert_account(db, user.id, "google", "me@example.com").id
    upsert_account(db, user.id, "custom", "me@example.com")
    removed = remove_accounts(db, user.id, "ME@example.com")
    assert sorted(r["provider"] for r in removed) == ["custom", "google"]
    assert not is_connected(db, google_id)
    with pytest.raises(NotConnectedError):
        remove_accounts(db, user.id, "me@example.com")
    with pytest.raises(NotConnectedError):
        get_account(db, google_id)
