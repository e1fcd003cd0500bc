"""Administrative user management: listing users and changing roles."""
from typing import List, Tuple

import structlog

from ..errors import NotFoundError, ServerError, ValidationError
from .credentials.models import Pagination, Role, UserView
from .credentials.store import CredentialStore, RecordNotFoundError, StoreError

log = structlog.get_logger()

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def normalize_pagination(page: int, limit: int) -> Tuple[int, int]:
    if page < 1:
        page = 1
    if limit < 1:
        limit = DEFAULT_PAGE_SIZE
    return page, min(limit, MAX_PAGE_SIZE)


def normalize_role(role: str) -> Role:
    value = (role or "").strip().lower()
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(
            "Role must be admin, author, or reader",
            detail={"reason": "unknown role"},
        )


class AdminService:
    """User administration for actors holding the admin role."""

    def __init__(self, store: CredentialStore):
        self._store = store

    def list_users(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Tuple[List[UserView], Pagination]:
        page, limit = normalize_pagination(page, limit)
        try:
            users = self._store.list_users(limit=limit, offset=(page - 1) * limit)
            total = self._store.count_users()
        except StoreError as e:
            log.error("admin.list_users_failed", error=str(e))
            raise ServerError() from e

        total_pages = (total + limit - 1) // limit
        return (
            [UserView.from_user(u) for u in users],
            Pagination(page=page, limit=limit, total=total, total_pages=total_pages),
        )

    def update_user_role(self, user_id: str, role: str) -> UserView:
        """
        Change a user's role.

        Raises:
            ValidationError: Blank user id or unknown role
            NotFoundError: User does not exist
        """
        new_role = normalize_role(role)
        if not (user_id or "").strip():
            raise ValidationError("User id is required", detail={"reason": "user id is required"})

        try:
            user = self._store.update_user_role(user_id.strip(), new_role)
        except RecordNotFoundError:
            raise NotFoundError("User not found")
        except StoreError as e:
            log.error("admin.update_role_failed", error=str(e))
            raise ServerError() from e

        log.info("admin.role_updated", target_user_id=user.id, role=new_role.value)
        return UserView.from_user(user)
