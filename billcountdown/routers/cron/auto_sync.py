from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from billcountdown.db.session import get_session_factory, get_sync_session
from billcountdown.services.notifications.channels import (
    DeliveryChannels,
    get_delivery_channels,
)
from billcountdown.services.sync.auto_sync_orchestrator import (
    AutoSyncOrchestrator,
    sync_stats,
)
from billcountdown.services.sync.mailbox_sync import (
    MailboxSyncPipeline,
    get_mailbox_sync_pipeline,
)
from billcountdown.utils.responses import ResponseBuilder

auto_sync_router = APIRouter()


@auto_sync_router.post("/auto-sync-bills")
async def auto_sync_bills(
    request: Request,
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
    pipeline: Annotated[MailboxSyncPipeline, Depends(get_mailbox_sync_pipeline)],
    channels: Annotated[DeliveryChannels, Depends(get_delivery_channels)],
):
    """Re-scan the mailboxes that are due for a sync."""
    orchestrator = AutoSyncOrchestrator(
        session_factory=session_factory, pipeline=pipeline, channels=channels
    )
    summary = await orchestrator.run()

    message = (
        f"Auto-synced {summary.processed} users"
        if summary.processed
        else "No users need syncing"
    )
    return ResponseBuilder.success(
        request=request, data=summary.model_dump(), message=message
    )


@auto_sync_router.get("/auto-sync-bills")
async def get_auto_sync_stats(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
):
    """Outcome counts for the most recent automatic syncs."""
    stats = sync_stats(db)
    return ResponseBuilder.success(
        request=request, data=stats.model_dump(), message="Auto sync statistics"
    )
