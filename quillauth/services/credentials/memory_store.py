"""
Thread-safe in-memory credential store
"""

import threading
from typing import Callable, Dict, List, Optional, Tuple
from datetime import datetime

import structlog

from .models import Role, TokenKind, TokenRecord, User, utcnow
from .store import CredentialStore, DuplicateRecordError, RecordNotFoundError

log = structlog.get_logger()


class InMemoryCredentialStore(CredentialStore):
    """
    In-memory store for users and token records.

    A single re-entrant lock guards every read and every read-modify-write,
    which is what makes the consume operations conditional and atomic.
    Consumed records are kept, never deleted.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        """
        Initialize the store

        Args:
            clock: Source of the current time used for expiry checks
        """
        self._users: Dict[str, User] = {}
        self._user_ids_by_email: Dict[str, str] = {}
        self._tokens: Dict[Tuple[TokenKind, str], TokenRecord] = {}
        self._token_keys_by_id: Dict[str, Tuple[TokenKind, str]] = {}
        self._lock = threading.RLock()
        self._clock = clock
        log.info("store.initialized", backend="memory")

    def create_user(self, user: User) -> User:
        with self._lock:
            if user.email in self._user_ids_by_email:
                raise DuplicateRecordError("email already registered")
            if user.id in self._users:
                raise DuplicateRecordError("user id already exists")
            self._users[user.id] = user.model_copy()
            self._user_ids_by_email[user.email] = user.id
            return user.model_copy()

    def get_user_by_email(self, email: str) -> User:
        with self._lock:
            user_id = self._user_ids_by_email.get(email.strip().lower())
            if user_id is None:
                raise RecordNotFoundError("user not found")
            return self._users[user_id].model_copy()

    def get_user_by_id(self, user_id: str) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise RecordNotFoundError("user not found")
            return user.model_copy()

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise RecordNotFoundError("user not found")
            self._users[user_id] = user.model_copy(
                update={"password_hash": password_hash, "updated_at": self._clock()}
            )

    def update_user_role(self, user_id: str, role: Role) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise RecordNotFoundError("user not found")
            updated = user.model_copy(update={"role": role, "updated_at": self._clock()})
            self._users[user_id] = updated
            return updated.model_copy()

    def list_users(self, limit: int = 50, offset: int = 0) -> List[User]:
        with self._lock:
            users = sorted(self._users.values(), key=lambda u: u.created_at, reverse=True)
            return [u.model_copy() for u in users[offset:offset + limit]]

    def count_users(self) -> int:
        with self._lock:
            return len(self._users)

    def create_token_record(self, record: TokenRecord) -> TokenRecord:
        key = (record.kind, record.fingerprint)
        with self._lock:
            if key in self._tokens:
                raise DuplicateRecordError("token fingerprint already stored")
            self._tokens[key] = record.model_copy()
            self._token_keys_by_id[record.id] = key
            log.debug("token_record.stored", kind=record.kind.value, record_id=record.id)
            return record.model_copy()

    def get_active_token_record(self, kind: TokenKind, fingerprint: str) -> TokenRecord:
        with self._lock:
            record = self._tokens.get((kind, fingerprint))
            if record is None or not record.is_active(self._clock()):
                raise RecordNotFoundError("no active token record")
            return record.model_copy()

    def consume_token_by_fingerprint(self, kind: TokenKind, fingerprint: str) -> TokenRecord:
        with self._lock:
            return self._consume((kind, fingerprint))

    def consume_token_by_id(self, kind: TokenKind, record_id: str) -> TokenRecord:
        with self._lock:
            key = self._token_keys_by_id.get(record_id)
            if key is None or key[0] != kind:
                raise RecordNotFoundError("token record not found")
            return self._consume(key)

    def reset_password_with_token(self, record_id: str, user_id: str, password_hash: str) -> TokenRecord:
        with self._lock:
            key = self._token_keys_by_id.get(record_id)
            if key is None or key[0] != TokenKind.PASSWORD_RESET:
                raise RecordNotFoundError("token record not found")
            record = self._tokens[key]
            now = self._clock()
            if record.user_id != user_id or not record.is_active(now):
                raise RecordNotFoundError("no active token record")
            self.update_password_hash(user_id, password_hash)
            return self._consume(key, now)

    def _consume(self, key: Tuple[TokenKind, str], now: Optional[datetime] = None) -> TokenRecord:
        now = now or self._clock()
        record = self._tokens.get(key)
        if record is None or not record.is_active(now):
            raise RecordNotFoundError("no active token record")
        consumed = record.model_copy(update={"consumed_at": now})
        self._tokens[key] = consumed
        log.debug("token_record.consumed", kind=consumed.kind.value, record_id=consumed.id)
        return consumed.model_copy()

    def get_token_record(self, kind: TokenKind, fingerprint: str) -> Optional[TokenRecord]:
        """Return a record regardless of state (inspection helper)."""
        with self._lock:
            record = self._tokens.get((kind, fingerprint))
            return record.model_copy() if record else None

    def count_active_tokens(self, kind: TokenKind) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for (k, _), r in self._tokens.items() if k == kind and r.is_active(now))

    def health_check(self) -> bool:
        """In-memory store is always healthy."""
        return True

    def clear(self) -> None:
        """Remove all users and records"""
        with self._lock:
            self._users.clear()
            self._user_ids_by_email.clear()
            self._tokens.clear()
            self._token_keys_by_id.clear()
            log.info("store.cleared", backend="memory")
