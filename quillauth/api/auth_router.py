"""
API Router for credential lifecycle endpoints
"""

from fastapi import APIRouter, Depends, Request, Response, status

from ..auth.gate import Identity, require_identity
from ..services.credentials import CredentialLifecycle
from .schemas import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshRequest,
    RegisterRequest,
    TokensResponse,
)

router = APIRouter(prefix="/auth", tags=["auth"])

RESET_REQUESTED_MESSAGE = "If the email exists, a password reset link will be sent"
RESET_COMPLETED_MESSAGE = "Password has been reset successfully"


def get_lifecycle(request: Request) -> CredentialLifecycle:
    """Credential lifecycle from the application's service container"""
    return request.app.state.services.lifecycle


# Endpoints are plain ``def`` so bcrypt and store calls run in the threadpool


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register account",
)
def register(body: RegisterRequest, lifecycle: CredentialLifecycle = Depends(get_lifecycle)) -> AuthResponse:
    """
    Create an author account and return a signed-in token pair

    - **email**: Account email (normalized to lowercase)
    - **password**: At least 8 characters
    """
    user, tokens = lifecycle.register(body.email, body.password)
    return AuthResponse(user=user, tokens=tokens)


@router.post("/login", response_model=AuthResponse, summary="Log in")
def login(body: LoginRequest, lifecycle: CredentialLifecycle = Depends(get_lifecycle)) -> AuthResponse:
    user, tokens = lifecycle.login(body.email, body.password)
    return AuthResponse(user=user, tokens=tokens)


@router.post("/refresh", response_model=TokensResponse, summary="Rotate refresh token")
def refresh(body: RefreshRequest, lifecycle: CredentialLifecycle = Depends(get_lifecycle)) -> TokensResponse:
    """
    Exchange a refresh token for a new pair. The presented token stops
    working.
    """
    return TokensResponse(tokens=lifecycle.refresh(body.refresh_token))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, summary="Log out")
def logout(body: LogoutRequest, lifecycle: CredentialLifecycle = Depends(get_lifecycle)) -> Response:
    lifecycle.logout(body.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/password-reset/request", response_model=MessageResponse, summary="Request password reset")
def request_password_reset(
    body: PasswordResetRequest, lifecycle: CredentialLifecycle = Depends(get_lifecycle)
) -> MessageResponse:
    """
    Always answers with the same message so callers cannot probe which
    emails are registered.
    """
    lifecycle.request_password_reset(body.email)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/password-reset/confirm", response_model=MessageResponse, summary="Confirm password reset")
def confirm_password_reset(
    body: PasswordResetConfirm, lifecycle: CredentialLifecycle = Depends(get_lifecycle)
) -> MessageResponse:
    lifecycle.confirm_password_reset(body.token, body.new_password)
    return MessageResponse(message=RESET_COMPLETED_MESSAGE)


@router.get("/me", response_model=MeResponse, summary="Current identity")
async def me(identity: Identity = Depends(require_identity)) -> MeResponse:
    return MeResponse(id=identity.user_id, role=identity.role)
