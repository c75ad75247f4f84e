import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from billcountdown.config.settings import settings as app_settings
from billcountdown.db.models import MailboxConnection, SyncLog, SyncStatus, SyncType
from billcountdown.db.session import SessionLocal
from billcountdown.schemas.notification_schemas import NotificationSettings
from billcountdown.schemas.sync_schemas import (
    SyncOptions,
    SyncResult,
    SyncStats,
    SyncSummary,
    UserSyncOutcome,
)
from billcountdown.services.notifications.channels import (
    DeliveryChannels,
    get_delivery_channels,
)
from billcountdown.services.notifications.settings_service import (
    resolve_settings_for_users,
)
from billcountdown.services.notifications.sync_notifications import send_new_bills_push
from billcountdown.services.sync.mailbox_sync import (
    HttpMailboxSyncPipeline,
    MailboxSyncPipeline,
)
from billcountdown.services.sync.sync_lock import SyncLockService, mailbox_sync_lock_key
from billcountdown.utils.datetime_utils import to_naive_utc, utc_now
from billcountdown.utils.logging import get_logger

logger = get_logger()

RECENT_LOG_LIMIT = 20


def is_due_for_sync(
    connection: MailboxConnection,
    notification_settings: NotificationSettings,
    now: datetime,
    stale_after: Optional[timedelta] = None,
    error_backoff: Optional[timedelta] = None,
) -> bool:
    """
    Whether a mailbox should be re-scanned in this pass.

    Due when auto sync is on and the mailbox was never synced, the last
    successful sync is older than `stale_after`, or the last attempt failed
    more than `error_backoff` ago. `now` is naive UTC.
    """
    if not notification_settings.auto_sync_enabled:
        return False

    stale_after = stale_after or timedelta(hours=app_settings.SYNC_STALE_HOURS)
    error_backoff = error_backoff or timedelta(hours=app_settings.SYNC_ERROR_BACKOFF_HOURS)

    if connection.last_auto_sync_at is None:
        return True
    if connection.last_auto_sync_at < now - stale_after:
        return True
    if connection.auto_sync_error:
        last_attempt = connection.last_auto_sync_attempt_at or connection.last_auto_sync_at
        return last_attempt < now - error_backoff
    return False


class AutoSyncOrchestrator:
    """Re-scans eligible mailboxes in small concurrent batches, one lease per user."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        pipeline: Optional[MailboxSyncPipeline] = None,
        channels: Optional[DeliveryChannels] = None,
        batch_size: Optional[int] = None,
        sync_timeout: Optional[float] = None,
        lock_ttl_seconds: Optional[int] = None,
        owner_id: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.pipeline = pipeline or HttpMailboxSyncPipeline()
        self.channels = channels or get_delivery_channels()
        self.batch_size = batch_size or app_settings.SYNC_BATCH_SIZE
        self.sync_timeout = sync_timeout or app_settings.SYNC_TIMEOUT_SECONDS
        self.lock_ttl_seconds = lock_ttl_seconds or app_settings.SYNC_LOCK_TTL_SECONDS
        self.owner_id = owner_id or f"auto-sync-{uuid.uuid4().hex}"

    async def run(self, now: Optional[datetime] = None) -> SyncSummary:
        now = to_naive_utc(now) if now is not None else to_naive_utc(utc_now())
        summary = SyncSummary()

        with self.session_factory() as db_session:
            candidates = self.select_users(db_session, now)

        if not candidates:
            logger.info("No mailboxes due for auto sync")
            return summary

        logger.info(f"Auto sync starting for {len(candidates)} user(s)")

        for start in range(0, len(candidates), self.batch_size):
            batch = candidates[start : start + self.batch_size]
            outcomes = await asyncio.gather(
                *(
                    self.process_user(user_id, user_settings)
                    for user_id, user_settings in batch
                )
            )
            for outcome in outcomes:
                summary.processed += 1
                if outcome.skipped:
                    summary.skipped += 1
                elif outcome.success:
                    summary.success += 1
                    summary.total_bills_created += outcome.bills_created
                    summary.total_needs_review += outcome.needs_review
                else:
                    summary.failed += 1

        logger.info(
            f"Auto sync finished: processed={summary.processed} success={summary.success} "
            f"failed={summary.failed} skipped={summary.skipped}"
        )
        return summary

    def select_users(
        self, db_session: Session, now: datetime
    ) -> List[Tuple[str, NotificationSettings]]:
        """Eligible users, least recently synced first."""
        connections = db_session.execute(select(MailboxConnection)).scalars().all()
        settings_by_user = resolve_settings_for_users(
            db_session, [c.user_id for c in connections]
        )

        eligible = [
            c
            for c in connections
            if is_due_for_sync(c, settings_by_user[c.user_id], now)
        ]
        eligible.sort(
            key=lambda c: (c.last_auto_sync_at is not None, c.last_auto_sync_at or now)
        )
        return [(c.user_id, settings_by_user[c.user_id]) for c in eligible]

    async def process_user(
        self, user_id: str, user_settings: NotificationSettings
    ) -> UserSyncOutcome:
        """
        Sync one user under the mailbox lease.

        A held lease means another run is syncing this user; that is reported
        as skipped and nothing is written.
        """
        log = logger.bind(user_id=user_id)
        key = mailbox_sync_lock_key(user_id)

        with self.session_factory() as db_session:
            lock = SyncLockService(db_session, owner_id=self.owner_id)
            try:
                acquired = lock.acquire(key, ttl_seconds=self.lock_ttl_seconds)
            except Exception as e:
                db_session.rollback()
                log.error(f"Could not acquire sync lock: {e}")
                return UserSyncOutcome(user_id=user_id, error=str(e))

            if not acquired:
                log.info("Sync already in progress, skipping")
                return UserSyncOutcome(user_id=user_id, skipped=True)

            try:
                result = await self._run_sync(db_session, user_id)
            except Exception as e:
                db_session.rollback()
                log.exception(f"Auto sync failed: {e}")
                result = SyncResult(success=False, error=str(e) or e.__class__.__name__)
            finally:
                try:
                    lock.release(key)
                except Exception as e:
                    db_session.rollback()
                    log.error(f"Could not release sync lock: {e}")

            outcome = UserSyncOutcome(
                user_id=user_id,
                success=result.success,
                bills_created=result.bills_created,
                needs_review=result.bills_needs_review,
                error=result.error,
            )

            if (
                result.success
                and (result.bills_created > 0 or result.bills_needs_review > 0)
                and user_settings.push_enabled
            ):
                try:
                    await send_new_bills_push(
                        db_session,
                        user_id,
                        result.bills_created,
                        result.bills_needs_review,
                        self.channels,
                    )
                except Exception as e:
                    db_session.rollback()
                    log.error(f"Sync summary push failed: {e}")

            return outcome

    async def _run_sync(self, db_session: Session, user_id: str) -> SyncResult:
        sync_log = SyncLog(
            user_id=user_id,
            sync_type=SyncType.AUTO,
            status=SyncStatus.RUNNING,
            started_at=to_naive_utc(utc_now()),
        )
        db_session.add(sync_log)
        db_session.commit()

        options = SyncOptions(
            sync_type=SyncType.AUTO.value,
            max_results=app_settings.SYNC_MAX_RESULTS,
            days_back=app_settings.SYNC_DAYS_BACK,
        )
        try:
            result = await asyncio.wait_for(
                self.pipeline.perform_sync(user_id, options), timeout=self.sync_timeout
            )
        except asyncio.TimeoutError:
            result = SyncResult(
                success=False, error=f"Sync timed out after {self.sync_timeout:g}s"
            )
        except Exception as e:
            result = SyncResult(success=False, error=str(e) or e.__class__.__name__)

        self._record_result(db_session, user_id, sync_log, result)
        return result

    def _record_result(
        self, db_session: Session, user_id: str, sync_log: SyncLog, result: SyncResult
    ) -> None:
        finished_at = to_naive_utc(utc_now())
        sync_log.status = SyncStatus.COMPLETED if result.success else SyncStatus.FAILED
        sync_log.completed_at = finished_at
        sync_log.bills_created = result.bills_created
        sync_log.bills_needs_review = result.bills_needs_review
        sync_log.error_message = result.error

        connection = db_session.execute(
            select(MailboxConnection).where(MailboxConnection.user_id == user_id)
        ).scalar_one_or_none()
        if connection is not None:
            connection.last_auto_sync_attempt_at = finished_at
            if result.success:
                connection.last_auto_sync_at = finished_at
                connection.auto_sync_error = None
            else:
                connection.auto_sync_error = result.error or "Unknown error"
        db_session.commit()

        if result.success:
            logger.info(
                f"Auto sync for user {user_id} done: {result.bills_created} created, "
                f"{result.bills_needs_review} need review"
            )
        else:
            logger.warning(f"Auto sync for user {user_id} failed: {result.error}")


def sync_stats(db_session: Session) -> SyncStats:
    """Status counts and details for the most recent auto syncs."""
    logs = db_session.execute(
        select(SyncLog)
        .where(SyncLog.sync_type == SyncType.AUTO)
        .order_by(SyncLog.started_at.desc())
        .limit(RECENT_LOG_LIMIT)
    ).scalars().all()

    stats: Dict[str, int] = {
        "total": len(logs),
        "completed": 0,
        "failed": 0,
        "running": 0,
        "bills_created": 0,
        "bills_needs_review": 0,
    }
    for sync_log in logs:
        stats[sync_log.status.value] += 1
        stats["bills_created"] += sync_log.bills_created
        stats["bills_needs_review"] += sync_log.bills_needs_review

    users_connected = db_session.execute(
        select(func.count()).select_from(MailboxConnection)
    ).scalar_one()
    stats["connected_mailboxes"] = users_connected

    return SyncStats(
        stats=stats,
        recent_logs=[
            {
                "id": sync_log.id,
                "user_id": sync_log.user_id,
                "status": sync_log.status.value,
                "started_at": sync_log.started_at.isoformat(),
                "completed_at": (
                    sync_log.completed_at.isoformat() if sync_log.completed_at else None
                ),
                "bills_created": sync_log.bills_created,
                "bills_needs_review": sync_log.bills_needs_review,
                "error": sync_log.error_message,
            }
            for sync_log in logs
        ],
    )
