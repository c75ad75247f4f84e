from fastapi import APIRouter

from billcountdown.routers.cron import cron_router
from billcountdown.routers.shared import shared_router

main_router = APIRouter()

# Include domain-based routers
main_router.include_router(cron_router, prefix="/cron", tags=["Cron Triggers"])
main_router.include_router(shared_router, prefix="/shared", tags=["Shared Services"])
