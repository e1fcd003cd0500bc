"""
QuillAuth Credential Services Module

Provides the credential lifecycle engine and its building blocks:
- Password hashing and token fingerprinting
- Signed access/refresh token issuance and verification
- Credential storage (in-memory and Redis)
- Register, login, refresh, logout and password reset flows
"""

from .hasher import SecretHasher
from .codec import AccessClaims, RefreshClaims, SigningKeyRing, TokenCodec
from .lifecycle import CredentialLifecycle
from .memory_store import InMemoryCredentialStore
from .redis_store import RedisCredentialStore
from .store import CredentialStore, DuplicateRecordError, RecordNotFoundError, StoreError
from .models import (
    Pagination,
    Role,
    TokenKind,
    TokenPair,
    TokenRecord,
    User,
    UserView,
)

__all__ = [
    "SecretHasher",
    "AccessClaims",
    "RefreshClaims",
    "SigningKeyRing",
    "TokenCodec",
    "CredentialLifecycle",
    "InMemoryCredentialStore",
    "RedisCredentialStore",
    "CredentialStore",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "StoreError",
    "Pagination",
    "Role",
    "TokenKind",
    "TokenPair",
    "TokenRecord",
    "User",
    "UserView",
]
