from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from billcountdown.db.session import get_sync_session
from billcountdown.services.notifications.channels import (
    DeliveryChannels,
    get_delivery_channels,
)
from billcountdown.services.notifications.queue_drainer import (
    QueueDrainer,
    queue_stats,
)
from billcountdown.utils.responses import ResponseBuilder

reminders_router = APIRouter()


@reminders_router.post("/send-bill-reminders")
async def send_bill_reminders(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
    channels: Annotated[DeliveryChannels, Depends(get_delivery_channels)],
):
    """
    Deliver every due reminder in the queue.

    Returns counts of processed, sent, skipped, failed and interrupted rows.
    """
    summary = await QueueDrainer(db, channels=channels).drain()

    message = (
        f"Processed {summary.processed} notifications"
        if summary.processed
        else "No pending notifications"
    )
    return ResponseBuilder.success(
        request=request, data=summary.model_dump(), message=message
    )


@reminders_router.get("/send-bill-reminders")
async def get_reminder_queue_stats(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
):
    """Row counts per queue status."""
    stats = queue_stats(db)
    return ResponseBuilder.success(
        request=request, data=stats.model_dump(), message="Reminder queue statistics"
    )
