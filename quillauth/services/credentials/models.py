"""
Credential models: users, persisted token records, and token pairs
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    ADMIN = "admin"
    AUTHOR = "author"
    READER = "reader"


class TokenKind(str, Enum):
    """Kinds of persisted single-use tokens"""
    REFRESH = "refresh"
    PASSWORD_RESET = "password_reset"


class User(BaseModel):
    """
    Stored credential. ``email`` is kept normalized (trimmed, lowercase).
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    password_hash: str
    role: Role = Role.AUTHOR
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TokenRecord(BaseModel):
    """
    Single-use, bounded-lifetime token record keyed by fingerprint.

    ``consumed_at`` means revoked for refresh tokens and used for password
    reset tokens. Once set it is never cleared.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: TokenKind
    user_id: str
    fingerprint: str
    expires_at: datetime
    consumed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Not consumed and not past expiry"""
        now = now or utcnow()
        return self.consumed_at is None and self.expires_at > now

    @property
    def revoked_at(self) -> Optional[datetime]:
        return self.consumed_at if self.kind == TokenKind.REFRESH else None

    @property
    def used_at(self) -> Optional[datetime]:
        return self.consumed_at if self.kind == TokenKind.PASSWORD_RESET else None


class UserView(BaseModel):
    """Public view of a user returned to clients"""
    id: str
    email: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        return cls(id=user.id, email=user.email, role=user.role)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    access_expires_at: datetime
    refresh_expires_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
