"""Tests for the Redis credential store against a mocked client."""
from datetime import timedelta
from unittest.mock import MagicMock

import orjson
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from quillauth.services.credentials import (
    DuplicateRecordError,
    RecordNotFoundError,
    RedisCredentialStore,
    Role,
    StoreError,
    TokenKind,
    TokenRecord,
    User,
)
from quillauth.services.credentials.models import utcnow


def dump(model) -> bytes:
    return orjson.dumps(model.model_dump(mode="json"))


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def redis_store(client):
    return RedisCredentialStore(client=client, prefix="qa")


@pytest.fixture
def user():
    return User(email="writer@example.com", password_hash="$2b$04$hash")


def test_requires_url_or_client():
    with pytest.raises(ValueError):
        RedisCredentialStore()


def test_create_user_claims_email_index(redis_store, client, user):
    client.set.return_value = True
    pipe = client.pipeline.return_value

    created = redis_store.create_user(user)

    assert created.id == user.id
    client.set.assert_called_once_with("qa:user_email:writer@example.com", user.id, nx=True)
    pipe.set.assert_called_once_with(f"qa:user:{user.id}", dump(user))
    pipe.zadd.assert_called_once_with("qa:users", {user.id: user.created_at.timestamp()})
    pipe.execute.assert_called_once()


def test_create_user_duplicate_email(redis_store, client, user):
    client.set.return_value = None

    with pytest.raises(DuplicateRecordError):
        redis_store.create_user(user)
    client.pipeline.assert_not_called()


def test_get_user_by_email(redis_store, client, user):
    client.get.side_effect = [user.id.encode(), dump(user)]

    found = redis_store.get_user_by_email(" Writer@Example.com ")

    assert found.id == user.id
    assert found.email == "writer@example.com"
    assert client.get.call_args_list[0].args == ("qa:user_email:writer@example.com",)


def test_get_user_missing(redis_store, client):
    client.get.return_value = None
    with pytest.raises(RecordNotFoundError):
        redis_store.get_user_by_id("missing")


def test_update_user_role(redis_store, client, user):
    client.get.return_value = dump(user)

    updated = redis_store.update_user_role(user.id, Role.READER)

    assert updated.role == Role.READER
    key, raw = client.set.call_args.args
    assert key == f"qa:user:{user.id}"
    assert orjson.loads(raw)["role"] == "reader"
    assert client.set.call_args.kwargs == {"xx": True}


def test_list_users(redis_store, client, user):
    client.zrevrange.return_value = [user.id.encode()]
    client.mget.return_value = [dump(user)]

    users = redis_store.list_users(limit=10, offset=20)

    assert [u.id for u in users] == [user.id]
    client.zrevrange.assert_called_once_with("qa:users", 20, 29)


def test_count_users(redis_store, client):
    client.zcard.return_value = 3
    assert redis_store.count_users() == 3


def test_create_token_record_indexes_id(redis_store, client):
    client.set.return_value = True
    record = TokenRecord(kind=TokenKind.REFRESH, user_id="u1", fingerprint="fp", expires_at=utcnow() + timedelta(hours=1))

    redis_store.create_token_record(record)

    first, second = client.set.call_args_list
    assert first.args[0] == "qa:token:refresh:fp"
    assert first.kwargs == {"nx": True}
    assert second.args == (f"qa:token_id:refresh:{record.id}", "fp")


def test_active_lookup_skips_consumed(redis_store, client):
    record = TokenRecord(
        kind=TokenKind.REFRESH,
        user_id="u1",
        fingerprint="fp",
        expires_at=utcnow() + timedelta(hours=1),
        consumed_at=utcnow(),
    )
    client.get.return_value = dump(record)

    with pytest.raises(RecordNotFoundError):
        redis_store.get_active_refresh_by_fingerprint("fp")


def test_active_lookup_skips_expired(redis_store, client):
    record = TokenRecord(
        kind=TokenKind.PASSWORD_RESET,
        user_id="u1",
        fingerprint="fp",
        expires_at=utcnow() - timedelta(seconds=1),
    )
    client.get.return_value = dump(record)

    with pytest.raises(RecordNotFoundError):
        redis_store.get_active_reset_by_fingerprint("fp")


def test_consume_runs_script(redis_store, client):
    record = TokenRecord(kind=TokenKind.REFRESH, user_id="u1", fingerprint="fp", expires_at=utcnow() + timedelta(hours=1))
    consumed = record.model_copy(update={"consumed_at": utcnow()})
    script = client.register_script.return_value
    script.return_value = dump(consumed)

    result = redis_store.revoke_refresh_by_fingerprint("fp")

    assert result.revoked_at is not None
    assert script.call_args.kwargs["keys"] == ["qa:token:refresh:fp"]


def test_consume_lost_race(redis_store, client):
    client.register_script.return_value.return_value = None

    with pytest.raises(RecordNotFoundError):
        redis_store.revoke_refresh_by_fingerprint("fp")


def test_consume_by_unknown_id(redis_store, client):
    client.get.return_value = None
    with pytest.raises(RecordNotFoundError):
        redis_store.mark_reset_used_by_id("missing")


def test_redis_errors_become_store_errors(redis_store, client):
    client.get.side_effect = RedisConnectionError("down")
    with pytest.raises(StoreError):
        redis_store.get_user_by_id("u1")


def test_health_check(redis_store, client):
    client.ping.return_value = True
    assert redis_store.health_check() is True

    client.ping.side_effect = RedisConnectionError("down")
    assert redis_store.health_check() is False


def test_close_releases_client(redis_store, client):
    redis_store.close()
    client.close.assert_called_once()


def test_create_user_releases_email_when_write_fails(redis_store, client, user):
    client.set.return_value = True
    client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")

    with pytest.raises(StoreError):
        redis_store.create_user(user)

    client.delete.assert_called_once_with("qa:user_email:writer@example.com")


def test_create_token_record_stores_expiry_epoch(redis_store, client):
    client.set.return_value = True
    expires_at = utcnow() + timedelta(minutes=30)
    record = TokenRecord(kind=TokenKind.PASSWORD_RESET, user_id="u1", fingerprint="fp", expires_at=expires_at)

    redis_store.create_token_record(record)

    stored = orjson.loads(client.set.call_args_list[0].args[1])
    assert stored["expires_ts"] == expires_at.timestamp()
    assert TokenRecord.model_validate(stored).id == record.id


def test_consume_passes_current_epoch(redis_store, client):
    client.register_script.return_value.return_value = None
    before = utcnow().timestamp()

    with pytest.raises(RecordNotFoundError):
        redis_store.revoke_refresh_by_fingerprint("fp")

    iso, epoch = client.register_script.return_value.call_args.kwargs["args"]
    assert isinstance(iso, str)
    assert before <= epoch <= utcnow().timestamp()


def test_reset_password_with_token_runs_script(redis_store, client):
    record = TokenRecord(kind=TokenKind.PASSWORD_RESET, user_id="u1", fingerprint="fp", expires_at=utcnow() + timedelta(minutes=30))
    used = record.model_copy(update={"consumed_at": utcnow()})
    client.get.return_value = b"fp"
    script = client.register_script.return_value
    script.return_value = dump(used)

    result = redis_store.reset_password_with_token(record.id, "u1", "$2b$04$new")

    assert result.used_at is not None
    client.get.assert_called_once_with(f"qa:token_id:password_reset:{record.id}")
    assert script.call_args.kwargs["keys"] == ["qa:token:password_reset:fp", "qa:user:u1"]
    assert script.call_args.kwargs["args"][2:] == ["$2b$04$new", "u1"]


def test_reset_password_with_token_inactive_record(redis_store, client):
    client.get.return_value = b"fp"
    client.register_script.return_value.return_value = None

    with pytest.raises(RecordNotFoundError):
        redis_store.reset_password_with_token("r1", "u1", "$2b$04$new")


def test_reset_password_with_token_unknown_id(redis_store, client):
    client.get.return_value = None

    with pytest.raises(RecordNotFoundError):
        redis_store.reset_password_with_token("missing", "u1", "$2b$04$new")
    client.register_script.assert_not_called()
