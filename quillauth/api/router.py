from fastapi import APIRouter

from .admin_router import router as admin_router
from .auth_router import router as auth_router

router = APIRouter(prefix="/api/v1")
router.include_router(auth_router)
router.include_router(admin_router)
