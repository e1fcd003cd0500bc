"""
API Router for user administration (admin role only)
"""

from fastapi import APIRouter, Depends, Request

from ..auth.gate import require_roles
from ..services.admin import DEFAULT_PAGE_SIZE, AdminService
from ..services.credentials import UserView
from .schemas import UpdateRoleRequest, UserListResponse

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_roles("admin"))],
)


def get_admin_service(request: Request) -> AdminService:
    return request.app.state.services.admin


@router.get("/users", response_model=UserListResponse, summary="List users")
def list_users(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    admin: AdminService = Depends(get_admin_service),
) -> UserListResponse:
    """
    List users newest first

    - **page**: 1-based page number
    - **limit**: Page size (default 20, max 100)
    """
    users, pagination = admin.list_users(page=page, limit=limit)
    return UserListResponse(users=users, pagination=pagination)


@router.patch("/users/{user_id}/role", response_model=UserView, summary="Change user role")
def update_user_role(
    user_id: str,
    body: UpdateRoleRequest,
    admin: AdminService = Depends(get_admin_service),
) -> UserView:
    return admin.update_user_role(user_id, body.role)
