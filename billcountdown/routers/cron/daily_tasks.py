from typing import Annotated, Any, Dict, List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import sessionmaker

from billcountdown.db.session import get_session_factory
from billcountdown.services.notifications.channels import (
    DeliveryChannels,
    get_delivery_channels,
)
from billcountdown.services.notifications.queue_drainer import QueueDrainer
from billcountdown.services.sync.auto_sync_orchestrator import AutoSyncOrchestrator
from billcountdown.services.sync.mailbox_sync import (
    MailboxSyncPipeline,
    get_mailbox_sync_pipeline,
)
from billcountdown.utils.logging import get_logger
from billcountdown.utils.responses import ResponseBuilder

daily_tasks_router = APIRouter()
logger = get_logger()


@daily_tasks_router.post("/daily-tasks")
async def run_daily_tasks(
    request: Request,
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
    pipeline: Annotated[MailboxSyncPipeline, Depends(get_mailbox_sync_pipeline)],
    channels: Annotated[DeliveryChannels, Depends(get_delivery_channels)],
):
    """
    Drain reminders, then run the auto sync, for platforms that only allow a
    single daily cron entry. A failing job does not stop the other one.
    """
    results: Dict[str, Any] = {"reminders": None, "auto_sync": None}
    errors: List[Dict[str, str]] = []

    try:
        with session_factory() as db_session:
            summary = await QueueDrainer(db_session, channels=channels).drain()
        results["reminders"] = summary.model_dump()
    except Exception as e:
        logger.error(f"Daily reminder drain failed: {e}", exc_info=True)
        errors.append({"job": "reminders", "error": str(e)})

    try:
        orchestrator = AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=channels
        )
        results["auto_sync"] = (await orchestrator.run()).model_dump()
    except Exception as e:
        logger.error(f"Daily auto sync failed: {e}", exc_info=True)
        errors.append({"job": "auto_sync", "error": str(e)})

    results["errors"] = errors
    message = (
        "Daily tasks completed"
        if not errors
        else f"Daily tasks completed with {len(errors)} error(s)"
    )
    return ResponseBuilder.success(request=request, data=results, message=message)
