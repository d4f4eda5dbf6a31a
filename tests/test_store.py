"""Unit tests for auth/store.py -- UserStore persistence and its invariants.

Covers:
- create/get round trip, email normalization, duplicate emails
- role validation on create and update
- inactive accounts are invisible to every auth lookup until reactivated
- reset-token fields are set and cleared as a pair
- consume_reset_token is single-use and honours the expiry window
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.store import UserStore


def _user(email: str = "ada@example.com", role: Role | str = Role.USER) -> User:
    return User(name="Ada Lovelace", email=email, hashed_password="$2b$04$fakehashfakehashfakehash", role=role)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TestCreateAndLookup:
    def test_create_assigns_id_and_defaults(self, store: UserStore) -> None:
        user = store.create_user(_user())
        assert user.id and len(user.id) == 32
        assert user.role is Role.USER
        assert user.active is True
        assert user.photo == "default.jpg"
        assert user.password_changed_at is None
        assert user.created_at is not None

    def test_get_by_id_round_trip(self, store: UserStore) -> None:
        created = store.create_user(_user())
        fetched = store.get_by_id(created.id)
        assert fetched == created

    def test_email_is_normalized(self, store: UserStore) -> None:
        store.create_user(_user(email="  Ada@Example.COM "))
        user = store.get_by_email("ADA@example.com")
        assert user is not None
        assert user.email == "ada@example.com"

    def test_duplicate_email_rejected(self, store: UserStore) -> None:
        store.create_user(_user())
        with pytest.raises(IntegrityError):
            store.create_user(_user(email="ADA@example.com"))

    def test_unknown_role_rejected_on_create(self, store: UserStore) -> None:
        with pytest.raises(ValueError):
            store.create_user(_user(role="superuser"))

    def test_empty_hash_rejected(self, store: UserStore) -> None:
        with pytest.raises(ValueError):
            store.create_user(User(name="Ada", email="ada@example.com", hashed_password=""))

    def test_string_role_accepted_when_valid(self, store: UserStore) -> None:
        user = store.create_user(_user(role="lead-guide"))
        assert store.get_by_id(user.id).role is Role.LEAD_GUIDE

    def test_unknown_id_returns_none(self, store: UserStore) -> None:
        assert store.get_by_id("0" * 32) is None
        assert store.get_by_email("nobody@example.com") is None


class TestUpdate:
    def test_update_role(self, store: UserStore) -> None:
        user = store.create_user(_user())
        assert store.update_user(user.id, role=Role.GUIDE) is True
        assert store.get_by_id(user.id).role is Role.GUIDE

    def test_update_rejects_unknown_role(self, store: UserStore) -> None:
        user = store.create_user(_user())
        with pytest.raises(ValueError):
            store.update_user(user.id, role="lead_guide")
        assert store.get_by_id(user.id).role is Role.USER

    def test_update_rejects_unknown_field(self, store: UserStore) -> None:
        user = store.create_user(_user())
        with pytest.raises(ValueError):
            store.update_user(user.id, password_reset_token="abc")

    def test_password_changed_at_round_trip(self, store: UserStore) -> None:
        user = store.create_user(_user())
        changed = _now()
        store.update_user(user.id, hashed_password="$2b$04$otherhashotherhash", password_changed_at=changed)
        fetched = store.get_by_id(user.id)
        assert fetched.password_changed_at == changed
        assert fetched.hashed_password == "$2b$04$otherhashotherhash"


class TestSoftDelete:
    def test_inactive_user_invisible_to_lookups(self, store: UserStore) -> None:
        user = store.create_user(_user())
        store.update_user(user.id, active=False)
        assert store.get_by_id(user.id) is None
        assert store.get_by_email(user.email) is None
        assert store.list_users() == []

    def test_inactive_user_cannot_be_updated(self, store: UserStore) -> None:
        user = store.create_user(_user())
        store.update_user(user.id, active=False)
        assert store.update_user(user.id, name="Ghost") is False

    def test_inactive_user_hidden_from_reset_lookup(self, store: UserStore) -> None:
        user = store.create_user(_user())
        store.set_reset_token(user.id, "d" * 64, _now() + timedelta(minutes=10))
        store.update_user(user.id, active=False)
        assert store.get_by_reset_token("d" * 64, _now()) is None

    def test_admin_lookup_and_reactivation(self, store: UserStore) -> None:
        user = store.create_user(_user())
        store.update_user(user.id, active=False)
        hidden = store.get_any_by_id(user.id)
        assert hidden is not None and hidden.active is False

        assert store.reactivate_user(user.id) is True
        assert store.get_by_id(user.id) is not None

    def test_reactivate_unknown_id(self, store: UserStore) -> None:
        assert store.reactivate_user("0" * 32) is False

    def test_count_active_admins(self, store: UserStore) -> None:
        a = store.create_user(_user(email="a@example.com", role=Role.ADMIN))
        store.create_user(_user(email="b@example.com", role=Role.ADMIN))
        store.create_user(_user(email="c@example.com"))
        assert store.count_active_admins() == 2
        store.update_user(a.id, active=False)
        assert store.count_active_admins() == 1


class TestResetTokenFields:
    def test_set_and_find(self, store: UserStore) -> None:
        user = store.create_user(_user())
        expires = _now() + timedelta(minutes=10)
        assert store.set_reset_token(user.id, "a" * 64, expires) is True
        found = store.get_by_reset_token("a" * 64, _now())
        assert found is not None and found.id == user.id
        assert found.password_reset_expires == expires

    def test_expired_window_not_found(self, store: UserStore) -> None:
        user = store.create_user(_user())
        store.set_reset_token(user.id, "a" * 64, _now() - timedelta(seconds=1))
        assert store.get_by_reset_token("a" * 64, _now()) is None

    def test_clear_only_matching_digest(self, store: UserStore) -> None:
        user = store.create_user(_user())
        store.set_reset_token(user.id, "b" * 64, _now() + timedelta(minutes=10))
        assert store.clear_reset_token(user.id, "a" * 64) is False
        assert store.get_by_id(user.id).password_reset_token == "b" * 64

        assert store.clear_reset_token(user.id, "b" * 64) is True
        cleared = store.get_by_id(user.id)
        assert cleared.password_reset_token is None
        assert cleared.password_reset_expires is None

    def test_consume_is_single_use(self, store: UserStore) -> None:
        user = store.create_user(_user())
        store.set_reset_token(user.id, "c" * 64, _now() + timedelta(minutes=10))
        args = (user.id, "c" * 64, _now(), "$2b$04$newhashnewhashnewhash", _now())
        assert store.consume_reset_token(*args) is True
        assert store.consume_reset_token(*args) is False

        fetched = store.get_by_id(user.id)
        assert fetched.hashed_password == "$2b$04$newhashnewhashnewhash"
        assert fetched.password_reset_token is None
        assert fetched.password_reset_expires is None
        assert fetched.password_changed_at is not None

    def test_consume_after_expiry_fails(self, store: UserStore) -> None:
        user = store.create_user(_user())
        expires = _now() + timedelta(minutes=10)
        store.set_reset_token(user.id, "c" * 64, expires)
        late = expires + timedelta(seconds=1)
        assert store.consume_reset_token(user.id, "c" * 64, late, "$2b$04$newhash", late) is False
        assert store.get_by_id(user.id).hashed_password == "$2b$04$fakehashfakehashfakehash"
