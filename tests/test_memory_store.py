"""
Tests for InMemoryCredentialStore

Tests cover:
- User creation, lookup and updates
- Token record storage and active lookups
- Conditional, single-winner consumption
"""

import threading
from datetime import timedelta

import pytest

from quillauth.services.credentials import (
    DuplicateRecordError,
    InMemoryCredentialStore,
    RecordNotFoundError,
    Role,
    TokenKind,
    User,
)
from quillauth.services.credentials.models import utcnow


def make_user(email="reader@example.com", created_at=None) -> User:
    user = User(email=email, password_hash="$2b$04$hash")
    if created_at is not None:
        user = user.model_copy(update={"created_at": created_at})
    return user


class TestUsers:
    """Test user persistence"""

    def test_create_and_lookup(self, store):
        user = store.create_user(make_user())

        assert store.get_user_by_id(user.id).email == "reader@example.com"
        assert store.get_user_by_email("reader@example.com").id == user.id

    def test_email_lookup_is_normalized(self, store):
        user = store.create_user(make_user())
        assert store.get_user_by_email("  Reader@Example.COM ").id == user.id

    def test_duplicate_email_rejected(self, store):
        store.create_user(make_user())
        with pytest.raises(DuplicateRecordError):
            store.create_user(make_user())

    def test_unknown_user(self, store):
        with pytest.raises(RecordNotFoundError):
            store.get_user_by_id("missing")
        with pytest.raises(RecordNotFoundError):
            store.get_user_by_email("missing@example.com")

    def test_update_password_hash(self, store):
        user = store.create_user(make_user())
        store.update_password_hash(user.id, "$2b$04$new")

        updated = store.get_user_by_id(user.id)
        assert updated.password_hash == "$2b$04$new"
        assert updated.updated_at >= user.updated_at

    def test_update_password_unknown_user(self, store):
        with pytest.raises(RecordNotFoundError):
            store.update_password_hash("missing", "$2b$04$new")

    def test_update_role(self, store):
        user = store.create_user(make_user())
        updated = store.update_user_role(user.id, Role.ADMIN)

        assert updated.role == Role.ADMIN
        assert store.get_user_by_id(user.id).role == Role.ADMIN

    def test_returned_users_are_copies(self, store):
        user = store.create_user(make_user())
        fetched = store.get_user_by_id(user.id)
        fetched.role = Role.ADMIN

        assert store.get_user_by_id(user.id).role == Role.AUTHOR

    def test_list_users_newest_first_with_paging(self, store):
        base = utcnow()
        for i in range(5):
            store.create_user(make_user(f"user{i}@example.com", created_at=base + timedelta(seconds=i)))

        first_page = store.list_users(limit=2, offset=0)
        second_page = store.list_users(limit=2, offset=2)

        assert [u.email for u in first_page] == ["user4@example.com", "user3@example.com"]
        assert [u.email for u in second_page] == ["user2@example.com", "user1@example.com"]
        assert store.count_users() == 5


class TestTokenRecords:
    """Test token record lifecycle"""

    def test_active_lookup(self, store):
        record = store.create_refresh_token("user-1", "fp-1", utcnow() + timedelta(hours=1))
        found = store.get_active_refresh_by_fingerprint("fp-1")

        assert found.id == record.id
        assert found.kind == TokenKind.REFRESH

    def test_kinds_are_separate(self, store):
        store.create_refresh_token("user-1", "fp-1", utcnow() + timedelta(hours=1))
        with pytest.raises(RecordNotFoundError):
            store.get_active_reset_by_fingerprint("fp-1")

    def test_duplicate_fingerprint_rejected(self, store):
        store.create_refresh_token("user-1", "fp-1", utcnow() + timedelta(hours=1))
        with pytest.raises(DuplicateRecordError):
            store.create_refresh_token("user-2", "fp-1", utcnow() + timedelta(hours=1))

    def test_expired_record_not_active(self, store):
        store.create_reset_token("user-1", "fp-1", utcnow() - timedelta(seconds=1))
        with pytest.raises(RecordNotFoundError):
            store.get_active_reset_by_fingerprint("fp-1")

    def test_revoke_once(self, store):
        store.create_refresh_token("user-1", "fp-1", utcnow() + timedelta(hours=1))

        revoked = store.revoke_refresh_by_fingerprint("fp-1")
        assert revoked.revoked_at is not None

        with pytest.raises(RecordNotFoundError):
            store.revoke_refresh_by_fingerprint("fp-1")
        with pytest.raises(RecordNotFoundError):
            store.get_active_refresh_by_fingerprint("fp-1")

        # Consumed records are kept, not deleted
        assert store.get_token_record(TokenKind.REFRESH, "fp-1").consumed_at is not None

    def test_mark_reset_used_by_id(self, store):
        record = store.create_reset_token("user-1", "fp-1", utcnow() + timedelta(minutes=30))

        used = store.mark_reset_used_by_id(record.id)
        assert used.used_at is not None

        with pytest.raises(RecordNotFoundError):
            store.mark_reset_used_by_id(record.id)

    def test_mark_used_with_wrong_kind(self, store):
        record = store.create_refresh_token("user-1", "fp-1", utcnow() + timedelta(hours=1))
        with pytest.raises(RecordNotFoundError):
            store.mark_reset_used_by_id(record.id)

    def test_expired_record_cannot_be_consumed(self, store):
        record = store.create_reset_token("user-1", "fp-1", utcnow() - timedelta(seconds=1))

        with pytest.raises(RecordNotFoundError):
            store.mark_reset_used_by_id(record.id)
        with pytest.raises(RecordNotFoundError):
            store.consume_token_by_fingerprint(TokenKind.PASSWORD_RESET, "fp-1")
        assert store.get_token_record(TokenKind.PASSWORD_RESET, "fp-1").consumed_at is None

    def test_reset_password_with_token(self, store):
        user = store.create_user(make_user())
        record = store.create_reset_token(user.id, "fp-1", utcnow() + timedelta(minutes=30))

        used = store.reset_password_with_token(record.id, user.id, "$2b$04$new")

        assert used.used_at is not None
        assert store.get_user_by_id(user.id).password_hash == "$2b$04$new"

        with pytest.raises(RecordNotFoundError):
            store.reset_password_with_token(record.id, user.id, "$2b$04$other")
        assert store.get_user_by_id(user.id).password_hash == "$2b$04$new"

    def test_reset_password_with_token_checks_owner(self, store):
        user = store.create_user(make_user())
        other = store.create_user(make_user("other@example.com"))
        record = store.create_reset_token(user.id, "fp-1", utcnow() + timedelta(minutes=30))

        with pytest.raises(RecordNotFoundError):
            store.reset_password_with_token(record.id, other.id, "$2b$04$new")

        assert store.get_user_by_id(other.id).password_hash == "$2b$04$hash"
        assert store.get_active_reset_by_fingerprint("fp-1").id == record.id

    def test_reset_password_with_expired_token(self, store):
        user = store.create_user(make_user())
        record = store.create_reset_token(user.id, "fp-1", utcnow() - timedelta(seconds=1))

        with pytest.raises(RecordNotFoundError):
            store.reset_password_with_token(record.id, user.id, "$2b$04$new")
        assert store.get_user_by_id(user.id).password_hash == "$2b$04$hash"

    def test_count_active_tokens(self, store):
        store.create_refresh_token("user-1", "fp-1", utcnow() + timedelta(hours=1))
        store.create_refresh_token("user-1", "fp-2", utcnow() + timedelta(hours=1))
        store.revoke_refresh_by_fingerprint("fp-1")

        assert store.count_active_tokens(TokenKind.REFRESH) == 1
        assert store.count_active_tokens(TokenKind.PASSWORD_RESET) == 0

    def test_concurrent_revoke_has_single_winner(self, store):
        store.create_refresh_token("user-1", "fp-1", utcnow() + timedelta(hours=1))
        results = []
        barrier = threading.Barrier(8)

        def revoke():
            barrier.wait()
            try:
                store.revoke_refresh_by_fingerprint("fp-1")
                results.append("won")
            except RecordNotFoundError:
                results.append("lost")

        threads = [threading.Thread(target=revoke) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("won") == 1
        assert results.count("lost") == 7


class TestMaintenance:

    def test_health_check(self, store):
        assert store.health_check() is True

    def test_clear(self):
        store = InMemoryCredentialStore()
        store.create_user(make_user())
        store.create_refresh_token("user-1", "fp-1", utcnow() + timedelta(hours=1))

        store.clear()

        assert store.count_users() == 0
        assert store.get_token_record(TokenKind.REFRESH, "fp-1") is None
