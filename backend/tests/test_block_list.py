import pytest

from backend.replai.core.errors import ValidationError, NotFoundError
from backend.replai.services.block_list import is_blocked, add_entry, remove_entry, list_entries
from conftest import make_user


def test_matches_address_domain_and_subdomain():
    entries = ["boss@acme.com", "spam.com"]
    assert is_blocked("boss@acme.com", entries)
    assert is_blocked("The Boss <BOSS@acme.com>", entries)
    assert not is_blocked("peer@acme.com", entries)
    assert is_blocked("x@spam.com", entries)
    assert is_blocked("x@mail.spam.com", entries)
    assert not is_blocked("x@notspam.com", entries)


def test_empty_inputs_never_block():
    assert not is_blocked("x@spam.com", [])
    assert not is_blocked("", ["spam.com"])
    assert not is_blocked(None, None)


def test_entry_crud(db):
    user = make_user(db)
    assert add_entry(db, user.id, " @Spam.COM ") == ["spam.com"]
    assert add_entry(db, user.id, "boss@acme.com") == ["spam.com", "boss@acme.com"]
    with pytest.raises(ValidationError):
        add_entry(db, user.id, "spam.com")
    with pytest.raises(ValidationError):
        add_entry(db, user.id, "  ")
    assert remove_entry(db, user.id, "SPAM.com") == ["boss@acme.com"]
    with pytest.raises(NotFoundError):
        remove_entry(db, user.id, "spam.com")
    assert list_entries(db, make_user(db).id) == []
