"""
Credential lifecycle: registration, login, refresh rotation, logout and
password reset
"""

import re
from datetime import datetime, timedelta
from typing import Callable, Tuple
from urllib.parse import quote

import jwt
import structlog

from quillauth.errors import (
    EmailAlreadyUsedError,
    InvalidCredentialsError,
    InvalidTokenError,
    ServerError,
    ValidationError,
)
from quillauth.logging import redact_email
from ..email import DeliveryError, EmailMessage, EmailSender
from .codec import TokenCodec
from .hasher import SecretHasher
from .models import Role, TokenPair, User, UserView, utcnow
from .store import CredentialStore, DuplicateRecordError, RecordNotFoundError, StoreError

log = structlog.get_logger()

MIN_PASSWORD_LENGTH = 8
# bcrypt only reads the first 72 bytes and newer releases refuse longer input
MAX_PASSWORD_BYTES = 72
DEFAULT_ROLE = Role.AUTHOR
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return len(email) >= 5 and _EMAIL_PATTERN.match(email) is not None


def is_valid_new_password(password: str) -> bool:
    password = password or ""
    return len(password) >= MIN_PASSWORD_LENGTH and len(password.encode("utf-8")) <= MAX_PASSWORD_BYTES


class CredentialLifecycle:
    """
    Orchestrates every credential flow on top of the token codec, the
    credential store and the secret hasher.

    Holds no per-user state: each call re-reads the store, which is the only
    synchronization point between concurrent requests.
    """

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        hasher: SecretHasher,
        email_sender: EmailSender,
        password_reset_ttl: timedelta = timedelta(minutes=30),
        frontend_base_url: str = "http://localhost:5173",
        metrics=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if password_reset_ttl <= timedelta(0):
            raise ValueError("Password reset TTL must be positive")
        self._store = store
        self._codec = codec
        self._hasher = hasher
        self._email = email_sender
        self._reset_ttl = password_reset_ttl
        self._frontend_base_url = frontend_base_url.rstrip("/")
        self._metrics = metrics
        self._clock = clock

    def register(self, email: str, password: str) -> Tuple[UserView, TokenPair]:
        """
        Create an author account and sign it in.

        Raises:
            ValidationError: Malformed email, or password shorter than 8 chars or
                longer than 72 bytes
            EmailAlreadyUsedError: Email already registered
        """
        email = normalize_email(email)
        if not is_valid_email(email) or not is_valid_new_password(password):
            self._record("register", "validation_error")
            raise ValidationError(
                "Email must be valid and password between 8 characters and 72 bytes",
                detail={"reason": "register input invalid"},
            )

        try:
            self._store.get_user_by_email(email)
        except RecordNotFoundError:
            pass
        except StoreError as e:
            raise self._internal("check existing user", e) from e
        else:
            self._record("register", "email_already_used")
            raise EmailAlreadyUsedError()

        user = User(email=email, password_hash=self._hasher.hash_password(password), role=DEFAULT_ROLE)
        try:
            user = self._store.create_user(user)
        except DuplicateRecordError:
            # Lost a race with a concurrent registration for the same email
            self._record("register", "email_already_used")
            raise EmailAlreadyUsedError()
        except StoreError as e:
            raise self._internal("create user", e) from e

        pair = self.issue_token_pair(user.id, user.role)
        log.info("auth.register.succeeded", user_id=user.id)
        self._record("register", "success")
        return UserView.from_user(user), pair

    def login(self, email: str, password: str) -> Tuple[UserView, TokenPair]:
        """
        Authenticate with email and password. Does not end other sessions.

        Raises:
            ValidationError: Malformed email or blank password
            InvalidCredentialsError: Unknown email or wrong password
        """
        email = normalize_email(email)
        if not is_valid_email(email) or not (password or "").strip():
            self._record("login", "validation_error")
            raise ValidationError(detail={"reason": "login input invalid"})

        try:
            user = self._store.get_user_by_email(email)
        except RecordNotFoundError:
            self._hasher.burn_verification(password)
            log.info("auth.login.failed", email=redact_email(email))
            self._record("login", "invalid_credentials")
            raise InvalidCredentialsError()
        except StoreError as e:
            raise self._internal("fetch user by email", e) from e

        if not self._hasher.verify_password(user.password_hash, password):
            log.info("auth.login.failed", email=redact_email(email))
            self._record("login", "invalid_credentials")
            raise InvalidCredentialsError()

        pair = self.issue_token_pair(user.id, user.role)
        log.info("auth.login.succeeded", user_id=user.id)
        self._record("login", "success")
        return UserView.from_user(user), pair

    def issue_token_pair(self, subject_id: str, role) -> TokenPair:
        """
        Sign a new access/refresh pair and persist the refresh fingerprint.

        Only the caller ever sees the raw tokens.
        """
        role_value = role.value if isinstance(role, Role) else str(role)
        try:
            access_token, access_expires_at = self._codec.issue_access(subject_id, role_value)
            refresh_token, _, refresh_expires_at = self._codec.issue_refresh(subject_id)
        except jwt.PyJWTError as e:
            raise self._internal("sign tokens", e) from e

        try:
            self._store.create_refresh_token(
                user_id=subject_id,
                fingerprint=self._hasher.fingerprint(refresh_token),
                expires_at=refresh_expires_at,
            )
        except StoreError as e:
            raise self._internal("store refresh token", e) from e

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def refresh(self, raw_refresh_token: str) -> TokenPair:
        """
        Rotate a refresh token: revoke the presented one, issue a new pair.

        A refresh token is valid at most once. Presenting it again, or losing
        a race against a concurrent refresh of the same token, fails.

        Raises:
            ValidationError: Blank token
            InvalidTokenError: Verification failed or token no longer active
        """
        raw = (raw_refresh_token or "").strip()
        if not raw:
            self._record("refresh", "validation_error")
            raise ValidationError(detail={"reason": "refresh token is required"})

        try:
            claims = self._codec.verify_refresh(raw)
        except InvalidTokenError:
            self._record("refresh", "invalid_token")
            raise

        fingerprint = self._hasher.fingerprint(raw)
        try:
            record = self._store.get_active_refresh_by_fingerprint(fingerprint)
        except RecordNotFoundError:
            log.warning("auth.refresh.inactive_token", user_id=claims.sub)
            self._record("refresh", "invalid_token")
            raise InvalidTokenError()
        except StoreError as e:
            raise self._internal("lookup refresh token", e) from e

        if record.user_id != claims.sub:
            log.warning("auth.refresh.owner_mismatch", user_id=claims.sub)
            self._record("refresh", "invalid_token")
            raise InvalidTokenError()

        try:
            user = self._store.get_user_by_id(claims.sub)
        except RecordNotFoundError:
            self._record("refresh", "invalid_token")
            raise InvalidTokenError()
        except StoreError as e:
            raise self._internal("get user for refresh", e) from e

        try:
            self._store.revoke_refresh_by_fingerprint(fingerprint)
        except RecordNotFoundError:
            # Another request rotated this token between our read and revoke
            log.warning("auth.refresh.concurrent_rotation", user_id=user.id)
            self._record("refresh", "invalid_token")
            raise InvalidTokenError()
        except StoreError as e:
            raise self._internal("revoke old refresh token", e) from e

        pair = self.issue_token_pair(user.id, user.role)
        log.info("auth.refresh.succeeded", user_id=user.id)
        self._record("refresh", "success")
        return pair

    def logout(self, raw_refresh_token: str) -> None:
        """
        Revoke a refresh token. Logging out twice is not an error.

        Raises:
            ValidationError: Blank token
            InvalidTokenError: Token fails verification
        """
        raw = (raw_refresh_token or "").strip()
        if not raw:
            self._record("logout", "validation_error")
            raise ValidationError(detail={"reason": "refresh token is required"})

        try:
            claims = self._codec.verify_refresh(raw)
        except InvalidTokenError:
            self._record("logout", "invalid_token")
            raise

        try:
            self._store.revoke_refresh_by_fingerprint(self._hasher.fingerprint(raw))
        except RecordNotFoundError:
            log.debug("auth.logout.already_revoked", user_id=claims.sub)
        except StoreError as e:
            raise self._internal("revoke refresh token", e) from e
        else:
            log.info("auth.logout.succeeded", user_id=claims.sub)
        self._record("logout", "success")

    def request_password_reset(self, email: str) -> None:
        """
        Start a password reset. Succeeds whether or not the email exists.

        Raises:
            ValidationError: Malformed email
        """
        email = normalize_email(email)
        if not is_valid_email(email):
            self._record("password_reset_request", "validation_error")
            raise ValidationError(detail={"reason": "password reset request invalid"})

        try:
            user = self._store.get_user_by_email(email)
        except RecordNotFoundError:
            log.info("auth.password_reset.unknown_email", email=redact_email(email))
            self._record("password_reset_request", "success")
            return
        except StoreError as e:
            raise self._internal("lookup user for reset", e) from e

        raw = self._hasher.random_token(32)
        try:
            self._store.create_reset_token(
                user_id=user.id,
                fingerprint=self._hasher.fingerprint(raw),
                expires_at=self._clock() + self._reset_ttl,
            )
        except StoreError as e:
            raise self._internal("store password reset token", e) from e

        reset_url = f"{self._frontend_base_url}/reset-password?token={quote(raw, safe='')}"
        message = EmailMessage(
            to=user.email,
            subject="Password Reset Request",
            body=f"Use this link to reset your password: {reset_url}",
        )
        try:
            self._email.send(message)
        except DeliveryError as e:
            log.error("auth.password_reset.email_failed", user_id=user.id, error=str(e))
        else:
            log.info("auth.password_reset.requested", user_id=user.id)
        self._record("password_reset_request", "success")

    def confirm_password_reset(self, raw_token: str, new_password: str) -> None:
        """
        Set a new password with a reset token. Each token works once.

        Raises:
            ValidationError: Blank token, or password shorter than 8 chars or
                longer than 72 bytes
            InvalidTokenError: Token unknown, expired or already used
        """
        raw = (raw_token or "").strip()
        if not raw or not is_valid_new_password(new_password):
            self._record("password_reset_confirm", "validation_error")
            raise ValidationError(
                "Token is required and password must be between 8 characters and 72 bytes",
                detail={"reason": "password reset confirm invalid"},
            )

        try:
            record = self._store.get_active_reset_by_fingerprint(self._hasher.fingerprint(raw))
        except RecordNotFoundError:
            self._record("password_reset_confirm", "invalid_token")
            raise InvalidTokenError()
        except StoreError as e:
            raise self._internal("load reset token", e) from e

        password_hash = self._hasher.hash_password(new_password)
        # Password write and used flag land together; a concurrent confirm of
        # the same token changes nothing and fails.
        try:
            self._store.reset_password_with_token(record.id, record.user_id, password_hash)
        except RecordNotFoundError:
            log.warning("auth.password_reset.concurrent_use", user_id=record.user_id)
            self._record("password_reset_confirm", "invalid_token")
            raise InvalidTokenError()
        except StoreError as e:
            raise self._internal("reset password", e) from e

        log.info("auth.password_reset.completed", user_id=record.user_id)
        self._record("password_reset_confirm", "success")

    def _internal(self, operation: str, error: Exception) -> ServerError:
        log.error("auth.internal_error", operation=operation, error=str(error), error_type=type(error).__name__)
        return ServerError()

    def _record(self, flow: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_auth_event(flow, outcome)
