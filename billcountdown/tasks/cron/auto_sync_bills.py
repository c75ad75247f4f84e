import asyncio

from billcountdown.celery import celery
from billcountdown.db.session import SessionLocal
from billcountdown.services.sync.auto_sync_orchestrator import AutoSyncOrchestrator
from billcountdown.utils.logging import get_logger


@celery.task(bind=True)
def auto_sync_bills_task(self, request_id: str, **kwargs):
    """
    Re-scan the mailboxes of users that are due for a sync.

    Overlapping runs are safe: a user whose sync lease is held by another run
    is skipped.
    """
    return asyncio.run(_async_auto_sync_bills(request_id, **kwargs))


async def _async_auto_sync_bills(request_id: str, **kwargs):
    logger = get_logger().bind(request_id=request_id)

    try:
        orchestrator = AutoSyncOrchestrator(
            session_factory=kwargs.get("session_factory", SessionLocal),
            pipeline=kwargs.get("pipeline"),
            channels=kwargs.get("channels"),
        )
        summary = await orchestrator.run(now=kwargs.get("now"))

        logger.info(
            "Auto sync completed",
            processed=summary.processed,
            success=summary.success,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        return {
            "success": True,
            **summary.model_dump(exclude={"success"}),
            "succeeded": summary.success,
            "request_id": request_id,
        }

    except Exception as e:
        logger.error("Auto sync task exception", error=str(e), exc_info=True)
        return {
            "success": False,
            "error": str(e),
            "request_id": request_id,
        }
