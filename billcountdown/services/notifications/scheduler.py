from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billcountdown.config.settings import settings as app_settings
from billcountdown.db.models import (
    Bill,
    NotificationChannel,
    NotificationQueueItem,
    QueueStatus,
)
from billcountdown.schemas.notification_schemas import (
    NotificationSettings,
    ScheduleResult,
)
from billcountdown.services.notifications.settings_service import (
    NotificationSettingsService,
)
from billcountdown.utils.datetime_utils import (
    get_zone,
    local_datetime,
    resolve_zone,
    to_naive_utc,
    to_utc,
    utc_now,
)
from billcountdown.utils.logging import get_logger

logger = get_logger()


def compute_scheduled_time(
    due_date: date,
    lead_days: int,
    timezone_name: str,
    hour: Optional[int] = None,
) -> datetime:
    """
    Reminder fire time as an aware datetime in the user's timezone.

    The wall-clock hour is fixed; the UTC offset is whatever that zone uses on
    the reminder day, so reminders stay at 9 AM local across DST changes.
    Unknown zones fall back to UTC.
    """
    try:
        zone = get_zone(timezone_name)
    except ValueError:
        logger.warning(f"Unknown timezone {timezone_name!r}, scheduling in UTC")
        zone = resolve_zone("UTC")

    reminder_hour = app_settings.REMINDER_HOUR if hour is None else hour
    reminder_day = due_date - timedelta(days=lead_days)
    return local_datetime(reminder_day, time(hour=reminder_hour), zone)


class NotificationScheduler:
    """Keeps the pending rows in the reminder queue consistent with bills."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def reschedule(
        self,
        bill: Bill,
        settings: NotificationSettings,
        now: Optional[datetime] = None,
    ) -> ScheduleResult:
        """
        Replace the bill's pending reminders with one row per enabled channel.

        Idempotent: running it again with the same inputs yields the same
        pending rows. Rows already sent, failed, skipped or being delivered are
        never touched.
        """
        now = to_utc(now) if now is not None else utc_now()
        result = ScheduleResult()

        if bill.is_paid:
            result.skipped.append("Bill is already paid")
            return result

        channels: List[NotificationChannel] = []
        if settings.email_enabled:
            channels.append(NotificationChannel.EMAIL)
        if settings.push_enabled:
            channels.append(NotificationChannel.PUSH)
        if not channels:
            result.skipped.append("No notification channels enabled")
            return result

        # Stale pending rows go even when no new reminder fits before the due date
        self.db.execute(
            delete(NotificationQueueItem).where(
                NotificationQueueItem.bill_id == bill.id,
                NotificationQueueItem.status == QueueStatus.PENDING,
            )
        )

        fire_at = compute_scheduled_time(
            bill.due_date, settings.lead_days, settings.timezone
        )
        due_start = local_datetime(bill.due_date, time.min, fire_at.tzinfo)

        if fire_at.astimezone(timezone.utc) <= now:
            self.db.commit()
            result.skipped.append("Scheduled time is in the past")
            return result
        if fire_at >= due_start:
            self.db.commit()
            result.skipped.append("Scheduled time is not before the due date")
            return result

        scheduled_for = to_naive_utc(fire_at)
        for channel in channels:
            try:
                with self.db.begin_nested():
                    self.db.add(
                        NotificationQueueItem(
                            user_id=bill.user_id,
                            bill_id=bill.id,
                            channel=channel,
                            scheduled_for=scheduled_for,
                            scheduled_date=fire_at.date(),
                            status=QueueStatus.PENDING,
                        )
                    )
            except IntegrityError:
                # A row for this bill, channel and day already exists in a
                # non-pending state
                result.skipped.append(
                    f"{channel.value} notification already scheduled for this day"
                )
                continue
            result.scheduled += 1

        self.db.commit()

        result.scheduled_for = fire_at.astimezone(timezone.utc)
        logger.info(
            f"Scheduled {result.scheduled} reminder(s) for bill {bill.id} "
            f"at {fire_at.isoformat()}"
        )
        return result

    def cancel(self, bill_id: str) -> int:
        """Drop the bill's pending reminders. Returns the number removed."""
        result = self.db.execute(
            delete(NotificationQueueItem).where(
                NotificationQueueItem.bill_id == bill_id,
                NotificationQueueItem.status == QueueStatus.PENDING,
            )
        )
        self.db.commit()
        if result.rowcount:
            logger.info(f"Cancelled {result.rowcount} pending reminder(s) for bill {bill_id}")
        return result.rowcount

    def reschedule_bill(
        self, bill: Bill, now: Optional[datetime] = None
    ) -> ScheduleResult:
        """Reschedule using the bill owner's stored settings."""
        settings = NotificationSettingsService(self.db).resolve(bill.user_id)
        return self.reschedule(bill, settings, now=now)

    def reschedule_user(
        self,
        user_id: str,
        settings: Optional[NotificationSettings] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, ScheduleResult]:
        """Reschedule every unpaid bill of a user, keyed by bill id."""
        if settings is None:
            settings = NotificationSettingsService(self.db).resolve(user_id)

        bills = self.db.execute(
            select(Bill).where(Bill.user_id == user_id, Bill.is_paid.is_(False))
        ).scalars().all()

        results: Dict[str, ScheduleResult] = {}
        for bill in bills:
            results[bill.id] = self.reschedule(bill, settings, now=now)
        return results
