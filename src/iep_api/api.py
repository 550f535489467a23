from fastapi import APIRouter

from iep_api.modules.pre_registrations import admin_router as admin_pre_registrations_router
from iep_api.modules.pre_registrations import router as pre_registrations_router

api_router = APIRouter()

api_router.include_router(
    pre_registrations_router, prefix="/pre-registrations", tags=["Pre-registrations"]
)

api_router.include_router(
    admin_pre_registrations_router,
    prefix="/pre-registrations/admin",
    tags=["Admin - Pre-registrations"],
)
