"""Bearer access-token authentication and role checks."""
from dataclasses import dataclass
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing import Iterable, Optional
import structlog

from ..errors import ForbiddenError, MissingTokenError
from ..services.credentials.codec import TokenCodec

log = structlog.get_logger()

# auto_error=False so a missing header maps to MissingTokenError, not FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller attached to the request scope."""
    user_id: str
    role: str


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an ``Authorization: Bearer <token>`` header.

    Raises:
        MissingTokenError: If the header is absent, uses another scheme, or
            carries an empty token
    """
    if not authorization:
        raise MissingTokenError()
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise MissingTokenError()
    return token.strip()


class AccessGate:
    """
    Verifies access tokens on protected requests.

    Only the token codec is consulted; access tokens carry the role inline so
    no store round-trip is needed.
    """

    def __init__(self, codec: TokenCodec):
        self._codec = codec

    def verify(self, token: str) -> Identity:
        """
        Raises:
            InvalidTokenError: If the token fails verification
        """
        claims = self._codec.verify_access(token)
        return Identity(user_id=claims.sub, role=claims.role)

    def authenticate(self, authorization: Optional[str]) -> Identity:
        """
        Authenticate a raw Authorization header value.

        Raises:
            MissingTokenError: No usable bearer token
            InvalidTokenError: Token fails verification
        """
        return self.verify(extract_bearer_token(authorization))

    @staticmethod
    def check_role(identity: Identity, allowed_roles: Iterable[str]) -> None:
        """
        Raises:
            ForbiddenError: If the identity's role is not allowed
        """
        allowed = {role.strip().lower() for role in allowed_roles}
        if identity.role.strip().lower() not in allowed:
            log.warning("auth.forbidden", role=identity.role, allowed=sorted(allowed))
            raise ForbiddenError()


async def require_identity(
    request: Request,
    _: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Identity:
    """
    Dependency that authenticates the request's bearer token.

    The Authorization header is read directly and handed to
    ``AccessGate.authenticate``; ``bearer_scheme`` only declares the security
    scheme in the OpenAPI schema. Stores the identity on
    ``request.state.identity`` and binds the user id to the logging context.

    Raises:
        MissingTokenError: No bearer token
        InvalidTokenError: Token fails verification
    """
    gate: AccessGate = request.app.state.services.access_gate
    try:
        identity = gate.authenticate(request.headers.get("Authorization"))
    except MissingTokenError:
        log.info("auth.failed", reason="missing_token")
        raise

    request.state.identity = identity
    structlog.contextvars.bind_contextvars(user_id=identity.user_id)
    return identity


def require_roles(*roles: str):
    """
    Build a dependency that allows only the given roles (case-insensitive).

    Example:
        @router.get("/admin/users", dependencies=[Depends(require_roles("admin"))])
    """
    allowed = tuple(roles)

    async def dependency(identity: Identity = Depends(require_identity)) -> Identity:
        AccessGate.check_role(identity, allowed)
        return identity

    return dependency
