from pydantic import BaseModel
from typing import List

from ..services.credentials.models import Pagination, TokenPair, UserView

# Request fields default to "" so blank and missing input reach the lifecycle
# validation and produce the same error body


class RegisterRequest(BaseModel):
    email: str = ""
    password: str = ""


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class RefreshRequest(BaseModel):
    refresh_token: str = ""


class LogoutRequest(BaseModel):
    refresh_token: str = ""


class PasswordResetRequest(BaseModel):
    email: str = ""


class PasswordResetConfirm(BaseModel):
    token: str = ""
    new_password: str = ""


class UpdateRoleRequest(BaseModel):
    role: str = ""


class AuthResponse(BaseModel):
    user: UserView
    tokens: TokenPair


class TokensResponse(BaseModel):
    tokens: TokenPair


class MessageResponse(BaseModel):
    message: str


class MeResponse(BaseModel):
    id: str
    role: str


class UserListResponse(BaseModel):
    users: List[UserView]
    pagination: Pagination
