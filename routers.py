from fastapi import APIRouter
from endpoints.auth import router as auth_router
from endpoints.locks import router as locks_router
from endpoints.realtime import router as realtime_router
from endpoints.admin_users import router as admin_users_router
from endpoints.audit import router as audit_router

api_router = APIRouter()
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(locks_router)
api_router.include_router(realtime_router)
api_router.include_router(admin_users_router)
api_router.include_router(audit_router)
