"""Unit tests for auth/store.py -- UserStore user and session token methods.

Covers:
- create_user() / get_by_username() / get_by_id() round trip
- Duplicate usernames raise IntegrityError
- save_token() overwrites in place: same row id, one row per user
- get_token_by_hash() finds only the current hash; the secret is never stored
- Timestamps survive the ISO 8601 round trip with their timezone
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from auth.models import IssuedToken, User
from auth.store import UserStore

_T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _issued(secret: str, at: datetime = _T0) -> IssuedToken:
    return IssuedToken(secret=secret, issued_at=at, expires_at=at + timedelta(hours=8))


@pytest.fixture
def user_id(store: UserStore) -> int:
    return store.create_user(User(username="moiraine", hashed_password="$2b$04$placeholder"))


class TestUsers:
    def test_create_and_lookup(self, store: UserStore, user_id: int) -> None:
        user = store.get_by_username("moiraine")
        assert user is not None
        assert user.id == user_id
        assert user.hashed_password == "$2b$04$placeholder"
        assert user.created_at is not None
        assert store.get_by_id(user_id).username == "moiraine"

    def test_unknown_username_returns_none(self, store: UserStore) -> None:
        assert store.get_by_username("nobody") is None

    def test_username_is_case_sensitive(self, store: UserStore, user_id: int) -> None:
        assert store.get_by_username("Moiraine") is None

    def test_duplicate_username_raises(self, store: UserStore, user_id: int) -> None:
        with pytest.raises(IntegrityError):
            store.create_user(User(username="moiraine", hashed_password="x"))

    def test_has_users(self, store: UserStore) -> None:
        assert store.has_users() is False
        store.create_user(User(username="lan", hashed_password="x"))
        assert store.has_users() is True

    def test_ping(self, store: UserStore) -> None:
        assert store.ping() is True


class TestSessionTokens:
    def test_save_returns_plaintext_secret(self, store: UserStore, user_id: int) -> None:
        token = store.save_token(user_id, _issued("first-secret"), "hash-1")
        assert token.secret == "first-secret"
        assert token.user_id == user_id
        assert token.id is not None

    def test_lookup_by_hash(self, store: UserStore, user_id: int) -> None:
        saved = store.save_token(user_id, _issued("first-secret"), "hash-1")
        found = store.get_token_by_hash("hash-1")
        assert found is not None
        assert found.id == saved.id
        assert found.user_id == user_id
        assert found.secret == ""
        assert found.issued_at == _T0
        assert found.expires_at == _T0 + timedelta(hours=8)

    def test_unknown_hash_returns_none(self, store: UserStore, user_id: int) -> None:
        store.save_token(user_id, _issued("first-secret"), "hash-1")
        assert store.get_token_by_hash("hash-2") is None

    def test_overwrite_keeps_id_and_single_row(self, store: UserStore, user_id: int) -> None:
        first = store.save_token(user_id, _issued("first-secret"), "hash-1")
        second = store.save_token(user_id, _issued("second-secret", _T0 + timedelta(hours=1)), "hash-2")

        assert second.id == first.id
        assert store.count_tokens_for_user(user_id) == 1
        assert store.get_token_by_hash("hash-1") is None
        current = store.get_token_by_hash("hash-2")
        assert current.issued_at == _T0 + timedelta(hours=1)

    def test_tokens_are_per_user(self, store: UserStore, user_id: int) -> None:
        other = store.create_user(User(username="lan", hashed_password="x"))
        a = store.save_token(user_id, _issued("a"), "hash-a")
        b = store.save_token(other, _issued("b"), "hash-b")
        assert a.id != b.id
        assert store.get_token_for_user(user_id).id == a.id
        assert store.get_token_for_user(other).id == b.id

    def test_plaintext_secret_never_persisted(self, store: UserStore, user_id: int) -> None:
        store.save_token(user_id, _issued("plaintext-secret-value"), "hash-1")
        with store.engine.connect() as conn:
            rows = conn.execute(text("SELECT * FROM session_tokens")).fetchall()
        assert rows
        assert all("plaintext-secret-value" not in map(str, row) for row in rows)

    def test_no_token_for_new_user(self, store: UserStore, user_id: int) -> None:
        assert store.get_token_for_user(user_id) is None
        assert store.count_tokens_for_user(user_id) == 0
