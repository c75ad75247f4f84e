import asyncio

from billcountdown.celery import celery
from billcountdown.db.session import get_sync_session
from billcountdown.services.notifications.queue_drainer import QueueDrainer
from billcountdown.utils.logging import get_logger


@celery.task(bind=True)
def send_bill_reminders_task(self, request_id: str, **kwargs):
    """
    Deliver every reminder whose scheduled time has passed.

    Runs every few minutes from beat. Failed rows are not retried, so the task
    itself never retries either; the next run simply picks up newer rows.
    """
    return asyncio.run(_async_send_bill_reminders(request_id, **kwargs))


async def _async_send_bill_reminders(request_id: str, **kwargs):
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            drainer = QueueDrainer(db_session, channels=kwargs.get("channels"))
            summary = await drainer.drain(now=kwargs.get("now"))

            logger.info(
                "Bill reminder drain completed",
                processed=summary.processed,
                sent=summary.sent,
                skipped=summary.skipped,
                failed=summary.failed,
                interrupted=summary.interrupted,
            )
            return {
                "success": True,
                **summary.model_dump(),
                "request_id": request_id,
            }

        except Exception as e:
            logger.error(
                "Bill reminder drain task exception",
                error=str(e),
                exc_info=True,
            )
            return {
                "success": False,
                "error": str(e),
                "request_id": request_id,
            }
