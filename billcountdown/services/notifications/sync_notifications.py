from typing import Optional

from sqlalchemy.orm import Session

from billcountdown.config.settings import settings
from billcountdown.services.notifications.channels import (
    ChannelSendResult,
    DeliveryChannels,
)
from billcountdown.services.notifications.delivery_targets import get_delivery_targets
from billcountdown.services.notifications.dispatch import fan_out_push
from billcountdown.services.notifications.messages import build_sync_summary_push
from billcountdown.utils.logging import get_logger

logger = get_logger()


async def send_new_bills_push(
    db_session: Session,
    user_id: str,
    bills_created: int,
    needs_review: int,
    channels: DeliveryChannels,
    timeout: Optional[float] = None,
) -> Optional[ChannelSendResult]:
    """
    Tell a user what the latest mailbox sync found.

    Returns None when there was nothing to report or nowhere to send it.
    """
    message = build_sync_summary_push(bills_created, needs_review)
    if message is None:
        return None

    targets = get_delivery_targets(db_session, user_id)
    if not targets.has_push_targets:
        logger.debug(f"No push targets for user {user_id}, skipping sync summary")
        return None

    result = await fan_out_push(
        db_session,
        user_id,
        targets,
        channels,
        lambda channel, recipients: channel.send_message(recipients, message),
        timeout or settings.CHANNEL_SEND_TIMEOUT_SECONDS,
    )
    logger.info(
        f"Sync summary push for user {user_id}: sent={result.sent} failed={result.failed}"
    )
    return result
