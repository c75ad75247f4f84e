from fastapi import APIRouter, Depends

from billcountdown.middlewares.cron_auth import verify_cron_secret

from .auto_sync import auto_sync_router
from .daily_tasks import daily_tasks_router
from .reminders import reminders_router

# Every trigger checks the shared secret before any work happens
cron_router = APIRouter(dependencies=[Depends(verify_cron_secret)])

cron_router.include_router(reminders_router, tags=["Cron - Reminders"])
cron_router.include_router(auto_sync_router, tags=["Cron - Auto Sync"])
cron_router.include_router(daily_tasks_router, tags=["Cron - Daily Tasks"])
