"""Credential store interface shared by the in-memory and Redis backends."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from .models import Role, TokenKind, TokenRecord, User


class StoreError(Exception):
    """Base exception for credential store failures"""
    pass


class RecordNotFoundError(StoreError):
    """Raised when a lookup or conditional update matches nothing"""
    pass


class DuplicateRecordError(StoreError):
    """Raised when a uniqueness constraint is violated"""
    pass


class CredentialStore(ABC):
    """
    Abstract persistence for users and single-use token records.

    Token records of both kinds go through the same primitives; a record is
    "consumed" when a refresh token is revoked or a reset token is used.
    Implementations must make the consume operations atomic conditional
    updates: they succeed only if the record is still unconsumed and
    unexpired.
    """

    # Users

    @abstractmethod
    def create_user(self, user: User) -> User:
        """
        Persist a new user.

        Raises:
            DuplicateRecordError: If the email is already registered
        """
        pass

    @abstractmethod
    def get_user_by_email(self, email: str) -> User:
        """
        Raises:
            RecordNotFoundError: If no user has this (normalized) email
        """
        pass

    @abstractmethod
    def get_user_by_id(self, user_id: str) -> User:
        """
        Raises:
            RecordNotFoundError: If the user does not exist
        """
        pass

    @abstractmethod
    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        """
        Raises:
            RecordNotFoundError: If the user does not exist
        """
        pass

    @abstractmethod
    def update_user_role(self, user_id: str, role: Role) -> User:
        """
        Raises:
            RecordNotFoundError: If the user does not exist
        """
        pass

    @abstractmethod
    def list_users(self, limit: int = 50, offset: int = 0) -> List[User]:
        """List users, newest first."""
        pass

    @abstractmethod
    def count_users(self) -> int:
        pass

    # Token records

    @abstractmethod
    def create_token_record(self, record: TokenRecord) -> TokenRecord:
        """
        Raises:
            DuplicateRecordError: If a record with the same kind and
                fingerprint already exists
        """
        pass

    @abstractmethod
    def get_active_token_record(self, kind: TokenKind, fingerprint: str) -> TokenRecord:
        """
        Return the record only if it is unconsumed and unexpired.

        Raises:
            RecordNotFoundError: If there is no active record
        """
        pass

    @abstractmethod
    def consume_token_by_fingerprint(self, kind: TokenKind, fingerprint: str) -> TokenRecord:
        """
        Set ``consumed_at`` if the record is still active (unconsumed and
        unexpired).

        Raises:
            RecordNotFoundError: If no active record matches
        """
        pass

    @abstractmethod
    def consume_token_by_id(self, kind: TokenKind, record_id: str) -> TokenRecord:
        """
        Set ``consumed_at`` if the record is still active.

        Raises:
            RecordNotFoundError: If no active record matches
        """
        pass

    @abstractmethod
    def reset_password_with_token(self, record_id: str, user_id: str, password_hash: str) -> TokenRecord:
        """
        Atomically overwrite the user's password hash and mark the
        password reset record used.

        The hash is written before the used flag, and neither is written
        unless the record is active and belongs to ``user_id``.

        Raises:
            RecordNotFoundError: If the record is not active or the user
                does not exist
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """
        Check if the backend is reachable.

        Returns:
            True if healthy, False otherwise
        """
        pass

    # Named helpers for the two token kinds

    def create_refresh_token(self, user_id: str, fingerprint: str, expires_at: datetime) -> TokenRecord:
        return self.create_token_record(
            TokenRecord(kind=TokenKind.REFRESH, user_id=user_id, fingerprint=fingerprint, expires_at=expires_at)
        )

    def get_active_refresh_by_fingerprint(self, fingerprint: str) -> TokenRecord:
        return self.get_active_token_record(TokenKind.REFRESH, fingerprint)

    def revoke_refresh_by_fingerprint(self, fingerprint: str) -> TokenRecord:
        return self.consume_token_by_fingerprint(TokenKind.REFRESH, fingerprint)

    def create_reset_token(self, user_id: str, fingerprint: str, expires_at: datetime) -> TokenRecord:
        return self.create_token_record(
            TokenRecord(kind=TokenKind.PASSWORD_RESET, user_id=user_id, fingerprint=fingerprint, expires_at=expires_at)
        )

    def get_active_reset_by_fingerprint(self, fingerprint: str) -> TokenRecord:
        return self.get_active_token_record(TokenKind.PASSWORD_RESET, fingerprint)

    def mark_reset_used_by_id(self, record_id: str) -> TokenRecord:
        return self.consume_token_by_id(TokenKind.PASSWORD_RESET, record_id)
