"""Redis-backed credential store.

Users and token records are stored as JSON documents. Email uniqueness is
enforced with ``SET NX`` on an index key, and token consumption runs as a
Lua compare-and-set so that two requests racing on the same record cannot
both consume it.
"""
import contextlib
from datetime import datetime
from typing import Callable, List, Optional

import orjson
import structlog
from redis import Redis
from redis.exceptions import RedisError

from .models import Role, TokenKind, TokenRecord, User, utcnow
from .store import CredentialStore, DuplicateRecordError, RecordNotFoundError, StoreError

log = structlog.get_logger()

# Record documents carry ``expires_ts`` (epoch seconds) so the scripts can
# compare expiry without parsing ISO timestamps.
#
# KEYS[1] record; ARGV[1] now (ISO), ARGV[2] now (epoch).
# Returns the updated document, or nil if the record is not active.
CONSUME_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return nil
end
local record = cjson.decode(raw)
if record['consumed_at'] ~= nil and record['consumed_at'] ~= cjson.null then
    return nil
end
local expires = tonumber(record['expires_ts'])
if expires == nil or expires <= tonumber(ARGV[2]) then
    return nil
end
record['consumed_at'] = ARGV[1]
local encoded = cjson.encode(record)
redis.call('SET', KEYS[1], encoded)
return encoded
"""

# KEYS[1] reset record, KEYS[2] user; ARGV[1] now (ISO), ARGV[2] now (epoch),
# ARGV[3] new password hash, ARGV[4] expected user id.
# Writes the password hash, then the used flag; nil if nothing was written.
RESET_PASSWORD_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return nil
end
local record = cjson.decode(raw)
if record['consumed_at'] ~= nil and record['consumed_at'] ~= cjson.null then
    return nil
end
local expires = tonumber(record['expires_ts'])
if expires == nil or expires <= tonumber(ARGV[2]) or record['user_id'] ~= ARGV[4] then
    return nil
end
local user_raw = redis.call('GET', KEYS[2])
if not user_raw then
    return nil
end
local user = cjson.decode(user_raw)
user['password_hash'] = ARGV[3]
user['updated_at'] = ARGV[1]
redis.call('SET', KEYS[2], cjson.encode(user))
record['consumed_at'] = ARGV[1]
local encoded = cjson.encode(record)
redis.call('SET', KEYS[1], encoded)
return encoded
"""


class RedisCredentialStore(CredentialStore):
    """Redis implementation of the credential store."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[Redis] = None,
        prefix: str = "quillauth",
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the Redis store.

        Args:
            redis_url: Redis connection URL (ignored when ``client`` is given)
            client: Pre-built Redis client
            prefix: Key namespace
            clock: Source of the current time used for expiry checks
        """
        if client is None and not redis_url:
            raise ValueError("RedisCredentialStore requires redis_url or client")
        self.redis_url = redis_url
        self._client = client
        self._prefix = prefix
        self._clock = clock
        self._scripts = {}

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return self._client

    def _script(self, source: str = CONSUME_SCRIPT):
        if source not in self._scripts:
            self._scripts[source] = self._get_client().register_script(source)
        return self._scripts[source]

    @contextlib.contextmanager
    def _wrap(self, operation: str):
        try:
            yield
        except RedisError as e:
            log.error("redis.operation_failed", operation=operation, error=str(e))
            raise StoreError(f"{operation} failed") from e

    # Keys

    def _user_key(self, user_id: str) -> str:
        return f"{self._prefix}:user:{user_id}"

    def _email_key(self, email: str) -> str:
        return f"{self._prefix}:user_email:{email}"

    def _users_index_key(self) -> str:
        return f"{self._prefix}:users"

    def _record_key(self, kind: TokenKind, fingerprint: str) -> str:
        return f"{self._prefix}:token:{kind.value}:{fingerprint}"

    def _record_id_key(self, kind: TokenKind, record_id: str) -> str:
        return f"{self._prefix}:token_id:{kind.value}:{record_id}"

    # Serialization

    @staticmethod
    def _dump(model) -> bytes:
        return orjson.dumps(model.model_dump(mode="json"))

    @staticmethod
    def _dump_record(record: TokenRecord) -> bytes:
        # expires_ts lets the Lua scripts compare expiry without parsing ISO dates
        data = record.model_dump(mode="json")
        data["expires_ts"] = record.expires_at.timestamp()
        return orjson.dumps(data)

    @staticmethod
    def _load_user(raw: bytes) -> User:
        return User.model_validate(orjson.loads(raw))

    @staticmethod
    def _load_record(raw: bytes) -> TokenRecord:
        return TokenRecord.model_validate(orjson.loads(raw))

    # Users

    def create_user(self, user: User) -> User:
        client = self._get_client()
        email_key = self._email_key(user.email)
        with self._wrap("create_user"):
            claimed = client.set(email_key, user.id, nx=True)
            if not claimed:
                raise DuplicateRecordError("email already registered")
            try:
                pipe = client.pipeline()
                pipe.set(self._user_key(user.id), self._dump(user))
                pipe.zadd(self._users_index_key(), {user.id: user.created_at.timestamp()})
                pipe.execute()
            except RedisError:
                # Release the email so a retry can register it
                client.delete(email_key)
                raise
        return user

    def get_user_by_email(self, email: str) -> User:
        client = self._get_client()
        with self._wrap("get_user_by_email"):
            user_id = client.get(self._email_key(email.strip().lower()))
        if user_id is None:
            raise RecordNotFoundError("user not found")
        if isinstance(user_id, bytes):
            user_id = user_id.decode("utf-8")
        return self.get_user_by_id(user_id)

    def get_user_by_id(self, user_id: str) -> User:
        client = self._get_client()
        with self._wrap("get_user_by_id"):
            raw = client.get(self._user_key(user_id))
        if raw is None:
            raise RecordNotFoundError("user not found")
        return self._load_user(raw)

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        user = self.get_user_by_id(user_id)
        updated = user.model_copy(update={"password_hash": password_hash, "updated_at": self._clock()})
        with self._wrap("update_password_hash"):
            self._get_client().set(self._user_key(user_id), self._dump(updated), xx=True)

    def update_user_role(self, user_id: str, role: Role) -> User:
        user = self.get_user_by_id(user_id)
        updated = user.model_copy(update={"role": role, "updated_at": self._clock()})
        with self._wrap("update_user_role"):
            self._get_client().set(self._user_key(user_id), self._dump(updated), xx=True)
        return updated

    def list_users(self, limit: int = 50, offset: int = 0) -> List[User]:
        client = self._get_client()
        with self._wrap("list_users"):
            user_ids = client.zrevrange(self._users_index_key(), offset, offset + limit - 1)
            if not user_ids:
                return []
            keys = [self._user_key(uid.decode("utf-8") if isinstance(uid, bytes) else uid) for uid in user_ids]
            raws = client.mget(keys)
        return [self._load_user(raw) for raw in raws if raw is not None]

    def count_users(self) -> int:
        with self._wrap("count_users"):
            return int(self._get_client().zcard(self._users_index_key()))

    # Token records

    def create_token_record(self, record: TokenRecord) -> TokenRecord:
        client = self._get_client()
        with self._wrap("create_token_record"):
            stored = client.set(self._record_key(record.kind, record.fingerprint), self._dump_record(record), nx=True)
            if not stored:
                raise DuplicateRecordError("token fingerprint already stored")
            client.set(self._record_id_key(record.kind, record.id), record.fingerprint)
        log.debug("token_record.stored", kind=record.kind.value, record_id=record.id, adapter="redis")
        return record

    def get_active_token_record(self, kind: TokenKind, fingerprint: str) -> TokenRecord:
        with self._wrap("get_active_token_record"):
            raw = self._get_client().get(self._record_key(kind, fingerprint))
        if raw is None:
            raise RecordNotFoundError("no active token record")
        record = self._load_record(raw)
        if not record.is_active(self._clock()):
            raise RecordNotFoundError("no active token record")
        return record

    def consume_token_by_fingerprint(self, kind: TokenKind, fingerprint: str) -> TokenRecord:
        now = self._clock()
        with self._wrap("consume_token"):
            raw = self._script()(
                keys=[self._record_key(kind, fingerprint)],
                args=[now.isoformat(), now.timestamp()],
            )
        if raw is None:
            raise RecordNotFoundError("no active token record")
        return self._load_record(raw)

    def _fingerprint_for(self, kind: TokenKind, record_id: str) -> str:
        with self._wrap("lookup_token_id"):
            fingerprint = self._get_client().get(self._record_id_key(kind, record_id))
        if fingerprint is None:
            raise RecordNotFoundError("token record not found")
        if isinstance(fingerprint, bytes):
            fingerprint = fingerprint.decode("utf-8")
        return fingerprint

    def consume_token_by_id(self, kind: TokenKind, record_id: str) -> TokenRecord:
        return self.consume_token_by_fingerprint(kind, self._fingerprint_for(kind, record_id))

    def reset_password_with_token(self, record_id: str, user_id: str, password_hash: str) -> TokenRecord:
        fingerprint = self._fingerprint_for(TokenKind.PASSWORD_RESET, record_id)
        now = self._clock()
        with self._wrap("reset_password"):
            raw = self._script(RESET_PASSWORD_SCRIPT)(
                keys=[self._record_key(TokenKind.PASSWORD_RESET, fingerprint), self._user_key(user_id)],
                args=[now.isoformat(), now.timestamp(), password_hash, user_id],
            )
        if raw is None:
            raise RecordNotFoundError("no active token record")
        return self._load_record(raw)

    def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            return bool(self._get_client().ping())
        except RedisError as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    def close(self):
        """Close Redis connection."""
        if self._client:
            self._client.close()
            self._client = None
