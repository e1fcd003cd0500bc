"""
Token codec for signed access and refresh tokens (JWT, HS256)
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional, Tuple

import jwt
import structlog
from pydantic import BaseModel

from quillauth.errors import InvalidTokenError
from .models import utcnow

log = structlog.get_logger()

ALGORITHM = "HS256"
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


@dataclass(frozen=True)
class SigningKeyRing:
    """
    Signing keys for one token kind.

    The active key signs new tokens; retired keys are only accepted for
    verification so tokens issued before a rotation stay valid until expiry.
    """
    active_kid: str
    active_secret: str
    retired: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.active_kid or not self.active_secret:
            raise ValueError("Signing key ring requires an active key id and secret")
        if self.active_kid in self.retired:
            raise ValueError(f"Key id '{self.active_kid}' is both active and retired")

    def secret_for(self, kid: Optional[str]) -> Optional[str]:
        if kid == self.active_kid:
            return self.active_secret
        if kid is None:
            return None
        return self.retired.get(kid)


class AccessClaims(BaseModel):
    sub: str
    role: str
    token_type: str
    iat: int
    exp: int
    jti: str


class RefreshClaims(BaseModel):
    sub: str
    token_type: str
    iat: int
    exp: int
    jti: str


class TokenCodec:
    """
    Issues and verifies access and refresh tokens.

    Keys are injected once at construction and never read from settings
    inside verification.
    """

    TOKEN_ID_BYTES = 18

    def __init__(
        self,
        access_keys: SigningKeyRing,
        refresh_keys: SigningKeyRing,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(hours=168),
        clock: Callable[[], datetime] = utcnow,
    ):
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise ValueError("Token TTLs must be positive")
        self._access_keys = access_keys
        self._refresh_keys = refresh_keys
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    @property
    def access_ttl(self) -> timedelta:
        return self._access_ttl

    @property
    def refresh_ttl(self) -> timedelta:
        return self._refresh_ttl

    def issue_access(self, subject_id: str, role: str) -> Tuple[str, datetime]:
        """
        Sign an access token carrying the subject's role.

        Returns:
            Tuple of (token, expires_at)
        """
        now = self._clock()
        expires_at = now + self._access_ttl
        claims = {
            "sub": subject_id,
            "role": role,
            "token_type": TOKEN_TYPE_ACCESS,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": self._new_token_id(),
        }
        return self._sign(claims, self._access_keys), expires_at

    def issue_refresh(self, subject_id: str) -> Tuple[str, str, datetime]:
        """
        Sign a refresh token.

        Returns:
            Tuple of (token, token_id, expires_at)
        """
        now = self._clock()
        expires_at = now + self._refresh_ttl
        token_id = self._new_token_id()
        claims = {
            "sub": subject_id,
            "token_type": TOKEN_TYPE_REFRESH,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": token_id,
        }
        return self._sign(claims, self._refresh_keys), token_id, expires_at

    def verify_access(self, token: str) -> AccessClaims:
        """
        Verify an access token.

        Raises:
            InvalidTokenError: On any signature, algorithm, expiry, kind or
                claim problem
        """
        payload = self._decode(token, self._access_keys)
        if payload.get("token_type") != TOKEN_TYPE_ACCESS:
            raise InvalidTokenError()
        if not payload.get("sub") or not payload.get("role"):
            raise InvalidTokenError()
        return self._to_claims(AccessClaims, payload)

    def verify_refresh(self, token: str) -> RefreshClaims:
        """
        Verify a refresh token.

        Raises:
            InvalidTokenError: On any signature, algorithm, expiry, kind or
                claim problem
        """
        payload = self._decode(token, self._refresh_keys)
        if payload.get("token_type") != TOKEN_TYPE_REFRESH:
            raise InvalidTokenError()
        if not payload.get("sub") or not payload.get("jti"):
            raise InvalidTokenError()
        return self._to_claims(RefreshClaims, payload)

    def _sign(self, claims: dict, keys: SigningKeyRing) -> str:
        return jwt.encode(
            claims,
            keys.active_secret,
            algorithm=ALGORITHM,
            headers={"kid": keys.active_kid},
        )

    def _decode(self, token: str, keys: SigningKeyRing) -> dict:
        if not token:
            raise InvalidTokenError()
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            raise InvalidTokenError()

        # Only HS256 is ever accepted, whatever the header claims
        if header.get("alg") != ALGORITHM:
            log.warning("token.rejected", reason="algorithm", alg=str(header.get("alg")))
            raise InvalidTokenError()

        secret = keys.secret_for(header.get("kid"))
        if secret is None:
            log.warning("token.rejected", reason="unknown_kid")
            raise InvalidTokenError()

        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "iat", "exp", "jti"]},
            )
        except jwt.ExpiredSignatureError:
            log.debug("token.rejected", reason="expired")
            raise InvalidTokenError()
        except jwt.InvalidTokenError as e:
            log.debug("token.rejected", reason=type(e).__name__)
            raise InvalidTokenError()

    @staticmethod
    def _to_claims(model, payload: dict):
        try:
            return model.model_validate(payload)
        except ValueError:
            raise InvalidTokenError()

    def _new_token_id(self) -> str:
        return secrets.token_urlsafe(self.TOKEN_ID_BYTES)
