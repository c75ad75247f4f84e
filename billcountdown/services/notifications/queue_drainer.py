import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from billcountdown.config.settings import settings as app_settings
from billcountdown.db.models import (
    Bill,
    NotificationChannel,
    NotificationQueueItem,
    QueueStatus,
)
from billcountdown.schemas.notification_schemas import (
    DeliveryTargets,
    DrainSummary,
    NotificationSettings,
    QueueStats,
)
from billcountdown.services.notifications.channels import (
    ChannelSendResult,
    DeliveryChannels,
    get_delivery_channels,
)
from billcountdown.services.notifications.delivery_targets import get_delivery_targets
from billcountdown.services.notifications.dispatch import (
    fan_out_push,
    send_with_timeout,
)
from billcountdown.services.notifications.settings_service import resolve_settings
from billcountdown.utils.datetime_utils import (
    local_datetime,
    resolve_zone,
    to_naive_utc,
    to_utc,
    utc_now,
)
from billcountdown.utils.logging import get_logger

logger = get_logger()

INTERRUPTED_MESSAGE = "Delivery interrupted before a result was recorded"


def days_until_due(due_date: date, timezone_name: str, now: datetime) -> int:
    """Whole days from `now` until local midnight of the due date, rounded up."""
    due_start = local_datetime(due_date, time.min, resolve_zone(timezone_name))
    remaining = due_start - to_utc(now)
    return math.ceil(remaining / timedelta(days=1))


@dataclass
class _UserContext:
    settings: NotificationSettings
    targets: DeliveryTargets


class QueueDrainer:
    """
    Delivers due reminder rows.

    Each row is claimed with a conditional update from pending to processing
    before anything is sent, so overlapping drains never deliver a row twice.
    """

    def __init__(
        self,
        db_session: Session,
        channels: Optional[DeliveryChannels] = None,
        batch_size: Optional[int] = None,
        send_timeout: Optional[float] = None,
        claim_timeout_minutes: Optional[int] = None,
    ):
        self.db = db_session
        self.channels = channels or get_delivery_channels()
        self.batch_size = batch_size or app_settings.REMINDER_BATCH_SIZE
        self.send_timeout = send_timeout or app_settings.CHANNEL_SEND_TIMEOUT_SECONDS
        self.claim_timeout = timedelta(
            minutes=claim_timeout_minutes or app_settings.CLAIM_TIMEOUT_MINUTES
        )

    async def drain(self, now: Optional[datetime] = None) -> DrainSummary:
        now = to_utc(now) if now is not None else utc_now()
        summary = DrainSummary()

        summary.interrupted = self.resolve_stale_claims(now)

        items = self._fetch_due(now)
        if not items:
            logger.info("No pending notifications due")
            return summary

        await self._process_batch(items, now, summary)

        logger.info(
            f"Reminder drain finished: processed={summary.processed} "
            f"sent={summary.sent} skipped={summary.skipped} "
            f"failed={summary.failed} interrupted={summary.interrupted}"
        )
        return summary

    def resolve_stale_claims(self, now: datetime) -> int:
        """
        Fail rows whose worker died between claim and result.

        They are not re-sent: the send may already have happened.
        """
        cutoff = to_naive_utc(now - self.claim_timeout)
        result = self.db.execute(
            update(NotificationQueueItem)
            .where(
                NotificationQueueItem.status == QueueStatus.PROCESSING,
                NotificationQueueItem.claimed_at < cutoff,
            )
            .values(status=QueueStatus.FAILED, error_message=INTERRUPTED_MESSAGE)
        )
        self.db.commit()
        if result.rowcount:
            logger.warning(f"Resolved {result.rowcount} interrupted reminder(s) as failed")
        return result.rowcount

    def _fetch_due(self, now: datetime) -> List[NotificationQueueItem]:
        return list(
            self.db.execute(
                select(NotificationQueueItem)
                .where(
                    NotificationQueueItem.status == QueueStatus.PENDING,
                    NotificationQueueItem.scheduled_for <= to_naive_utc(now),
                )
                .order_by(
                    NotificationQueueItem.scheduled_for.asc(),
                    NotificationQueueItem.id.asc(),
                )
                .limit(self.batch_size)
            ).scalars()
        )

    async def _process_batch(
        self, items: List[NotificationQueueItem], now: datetime, summary: DrainSummary
    ) -> None:
        # dicts keep insertion order, so each user's rows stay earliest-first
        by_user: Dict[str, List[NotificationQueueItem]] = {}
        for item in items:
            by_user.setdefault(item.user_id, []).append(item)

        for user_id, user_items in by_user.items():
            context: Optional[_UserContext] = None
            for item in user_items:
                if not self._claim(item.id, now):
                    logger.debug(f"Queue item {item.id} claimed by another worker")
                    continue
                summary.processed += 1

                try:
                    if context is None:
                        context = _UserContext(
                            settings=resolve_settings(self.db, user_id),
                            targets=get_delivery_targets(self.db, user_id),
                        )
                    status, error = await self._deliver(item, context, now)
                except Exception as e:
                    self.db.rollback()
                    logger.exception(f"Error delivering queue item {item.id}: {e}")
                    status, error = QueueStatus.FAILED, str(e) or e.__class__.__name__

                self._finish(item.id, status, error, now)
                if status == QueueStatus.SENT:
                    summary.sent += 1
                elif status == QueueStatus.SKIPPED:
                    summary.skipped += 1
                else:
                    summary.failed += 1

    def _claim(self, item_id: str, now: datetime) -> bool:
        result = self.db.execute(
            update(NotificationQueueItem)
            .where(
                NotificationQueueItem.id == item_id,
                NotificationQueueItem.status == QueueStatus.PENDING,
            )
            .values(status=QueueStatus.PROCESSING, claimed_at=to_naive_utc(now))
        )
        self.db.commit()
        return result.rowcount == 1

    def _finish(
        self,
        item_id: str,
        status: QueueStatus,
        error: Optional[str],
        now: datetime,
    ) -> None:
        self.db.execute(
            update(NotificationQueueItem)
            .where(
                NotificationQueueItem.id == item_id,
                NotificationQueueItem.status == QueueStatus.PROCESSING,
            )
            .values(
                status=status,
                sent_at=to_naive_utc(now) if status == QueueStatus.SENT else None,
                error_message=error,
            )
        )
        self.db.commit()

    async def _deliver(
        self, item: NotificationQueueItem, context: _UserContext, now: datetime
    ) -> Tuple[QueueStatus, Optional[str]]:
        # Bills can be paid or deleted after scheduling; re-read at send time
        bill = self.db.get(Bill, item.bill_id, populate_existing=True)
        if bill is None:
            return QueueStatus.SKIPPED, "Bill not found"
        if bill.is_paid:
            return QueueStatus.SKIPPED, "Bill already paid"

        days = days_until_due(bill.due_date, context.settings.timezone, now)

        if item.channel == NotificationChannel.EMAIL:
            if not context.targets.email:
                return QueueStatus.SKIPPED, "No email address"
            if not context.settings.email_enabled:
                return QueueStatus.SKIPPED, "Email notifications disabled"
            result = await send_with_timeout(
                self.channels.email.send(context.targets.email, bill, days),
                1,
                self.send_timeout,
            )
        else:
            if not context.targets.has_push_targets:
                return QueueStatus.SKIPPED, "No push subscriptions"
            if not context.settings.push_enabled:
                return QueueStatus.SKIPPED, "Push notifications disabled"
            result = await fan_out_push(
                self.db,
                item.user_id,
                context.targets,
                self.channels,
                lambda channel, targets: channel.send(targets, bill, days),
                self.send_timeout,
            )

        return self._outcome(item, result)

    def _outcome(
        self, item: NotificationQueueItem, result: ChannelSendResult
    ) -> Tuple[QueueStatus, Optional[str]]:
        if result.success:
            return QueueStatus.SENT, None
        error = result.error or f"{result.failed} failed"
        logger.warning(
            f"Delivery failed for queue item {item.id} ({item.channel.value}): {error}"
        )
        return QueueStatus.FAILED, error


def queue_stats(db_session: Session) -> QueueStats:
    """Row counts per queue status."""
    rows = db_session.execute(
        select(NotificationQueueItem.status, func.count()).group_by(
            NotificationQueueItem.status
        )
    ).all()
    counts = {status.value: count for status, count in rows}
    return QueueStats(**counts)
