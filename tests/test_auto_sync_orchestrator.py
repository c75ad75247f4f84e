import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from billcountdown.db.models import (
    MailboxConnection,
    SyncLock,
    SyncLog,
    SyncStatus,
    SyncType,
)
from billcountdown.schemas.notification_schemas import NotificationSettings
from billcountdown.schemas.sync_schemas import SyncResult
from billcountdown.services.notifications.channels import DeliveryChannels
from billcountdown.services.sync.auto_sync_orchestrator import (
    AutoSyncOrchestrator,
    is_due_for_sync,
    sync_stats,
)
from billcountdown.services.sync.sync_lock import SyncLockService, mailbox_sync_lock_key
from tests.factories import (
    FakeEmailChannel,
    FakePushChannel,
    FakeSyncPipeline,
    add_mailbox_connection,
    add_push_subscription,
    make_user,
    store_settings,
)

NOW = datetime(2026, 5, 1, 14, 0)


def push_channels():
    web = FakePushChannel()
    return web, DeliveryChannels(
        email=FakeEmailChannel(), web_push=web, native_push=FakePushChannel()
    )


def connection(**values) -> MailboxConnection:
    return MailboxConnection(user_id="u1", **values)


class TestEligibility:
    """Which mailboxes a pass picks up."""

    settings = NotificationSettings()

    def test_never_synced(self):
        assert is_due_for_sync(connection(), self.settings, NOW)

    def test_recent_success_is_not_due(self):
        recent = connection(last_auto_sync_at=NOW - timedelta(hours=2))
        assert not is_due_for_sync(recent, self.settings, NOW)

    def test_stale_success_is_due(self):
        stale = connection(last_auto_sync_at=NOW - timedelta(hours=21))
        assert is_due_for_sync(stale, self.settings, NOW)

    def test_error_after_backoff_is_due(self):
        errored = connection(
            last_auto_sync_at=NOW - timedelta(hours=5),
            last_auto_sync_attempt_at=NOW - timedelta(hours=2),
            auto_sync_error="token expired",
        )
        assert is_due_for_sync(errored, self.settings, NOW)

    def test_error_within_backoff_is_not_due(self):
        errored = connection(
            last_auto_sync_at=NOW - timedelta(hours=5),
            last_auto_sync_attempt_at=NOW - timedelta(minutes=30),
            auto_sync_error="token expired",
        )
        assert not is_due_for_sync(errored, self.settings, NOW)

    def test_auto_sync_disabled(self):
        disabled = NotificationSettings(auto_sync_enabled=False)
        assert not is_due_for_sync(connection(), disabled, NOW)


class TestAutoSyncRun:
    @pytest.mark.asyncio
    async def test_successful_sync_updates_connection_and_log(
        self, session_factory, db_session, fake_channels
    ):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user, auto_sync_error="old failure",
                               last_auto_sync_at=NOW - timedelta(days=2))
        pipeline = FakeSyncPipeline(result=SyncResult(success=True, bills_created=2))

        summary = await AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=fake_channels
        ).run(now=NOW)

        db_session.expire_all()
        conn = db_session.execute(select(MailboxConnection)).scalar_one()
        log = db_session.execute(select(SyncLog)).scalar_one()
        assert summary.processed == 1
        assert summary.success == 1
        assert summary.total_bills_created == 2
        assert pipeline.calls == [user.id]
        assert pipeline.options[0].sync_type == "auto"
        assert pipeline.options[0].max_results == 100
        assert pipeline.options[0].days_back == 2
        assert conn.auto_sync_error is None
        assert conn.last_auto_sync_at is not None
        assert conn.last_auto_sync_at > NOW - timedelta(days=2)
        assert log.status == SyncStatus.COMPLETED
        assert log.bills_created == 2
        assert db_session.execute(select(SyncLock)).first() is None

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_lock_released(
        self, session_factory, db_session, fake_channels
    ):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        pipeline = FakeSyncPipeline(error=RuntimeError("Gmail token revoked"))

        summary = await AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=fake_channels
        ).run(now=NOW)

        db_session.expire_all()
        conn = db_session.execute(select(MailboxConnection)).scalar_one()
        log = db_session.execute(select(SyncLog)).scalar_one()
        assert summary.failed == 1
        assert conn.auto_sync_error == "Gmail token revoked"
        assert conn.last_auto_sync_at is None
        assert conn.last_auto_sync_attempt_at is not None
        assert log.status == SyncStatus.FAILED
        assert log.error_message == "Gmail token revoked"
        assert db_session.execute(select(SyncLock)).first() is None

    @pytest.mark.asyncio
    async def test_reported_failure_is_recorded(
        self, session_factory, db_session, fake_channels
    ):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        pipeline = FakeSyncPipeline(result=SyncResult(success=False, error="quota"))

        summary = await AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=fake_channels
        ).run(now=NOW)

        db_session.expire_all()
        assert summary.failed == 1
        assert db_session.execute(select(MailboxConnection)).scalar_one().auto_sync_error == "quota"

    @pytest.mark.asyncio
    async def test_slow_sync_times_out(self, session_factory, db_session, fake_channels):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        pipeline = FakeSyncPipeline(delay=1.0)

        summary = await AutoSyncOrchestrator(
            session_factory=session_factory,
            pipeline=pipeline,
            channels=fake_channels,
            sync_timeout=0.05,
        ).run(now=NOW)

        db_session.expire_all()
        conn = db_session.execute(select(MailboxConnection)).scalar_one()
        assert summary.failed == 1
        assert conn.auto_sync_error.startswith("Sync timed out")
        assert db_session.execute(select(SyncLock)).first() is None

    @pytest.mark.asyncio
    async def test_held_lock_skips_without_touching_state(
        self, session_factory, db_session, fake_channels
    ):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        SyncLockService(db_session, owner_id="other-run").acquire(
            mailbox_sync_lock_key(user.id)
        )
        pipeline = FakeSyncPipeline()

        summary = await AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=fake_channels
        ).run(now=NOW)

        db_session.expire_all()
        conn = db_session.execute(select(MailboxConnection)).scalar_one()
        assert summary.skipped == 1
        assert summary.failed == 0
        assert pipeline.calls == []
        assert conn.last_auto_sync_attempt_at is None
        assert db_session.execute(select(SyncLog)).first() is None
        # The other run's lease is untouched
        assert db_session.execute(select(SyncLock)).scalar_one().owner_id == "other-run"

    @pytest.mark.asyncio
    async def test_overlapping_runs_sync_a_user_once(
        self, session_factory, db_session, fake_channels
    ):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        pipeline = FakeSyncPipeline(delay=0.05)

        first = AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=fake_channels
        )
        second = AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=fake_channels
        )
        summaries = await asyncio.gather(first.run(now=NOW), second.run(now=NOW))

        db_session.expire_all()
        assert pipeline.calls == [user.id]
        assert sum(s.success for s in summaries) == 1
        assert sum(s.skipped for s in summaries) == 1
        assert len(db_session.execute(select(SyncLog)).scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_batches_bound_concurrency(self, session_factory, db_session, fake_channels):
        for index in range(5):
            user = make_user(db_session, email=f"user{index}@example.com")
            add_mailbox_connection(db_session, user)
        pipeline = FakeSyncPipeline(delay=0.01)

        summary = await AutoSyncOrchestrator(
            session_factory=session_factory,
            pipeline=pipeline,
            channels=fake_channels,
            batch_size=2,
        ).run(now=NOW)

        assert summary.processed == 5
        assert summary.success == 5
        assert len(pipeline.calls) == 5
        assert pipeline.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_ineligible_users_are_not_processed(
        self, session_factory, db_session, fake_channels
    ):
        fresh = make_user(db_session, email="fresh@example.com")
        add_mailbox_connection(db_session, fresh, last_auto_sync_at=NOW - timedelta(hours=1))
        opted_out = make_user(db_session, email="optout@example.com")
        add_mailbox_connection(db_session, opted_out)
        store_settings(db_session, opted_out, auto_sync_enabled=False)
        pipeline = FakeSyncPipeline()

        summary = await AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=fake_channels
        ).run(now=NOW)

        assert summary.processed == 0
        assert pipeline.calls == []


class TestSyncSummaryPush:
    @pytest.mark.asyncio
    async def test_push_sent_when_bills_found(self, session_factory, db_session):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        store_settings(db_session, user, push_enabled=True)
        add_push_subscription(db_session, user, "https://push.example/a")
        web, channels = push_channels()
        pipeline = FakeSyncPipeline(
            result=SyncResult(success=True, bills_created=2, bills_needs_review=1)
        )

        await AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=channels
        ).run(now=NOW)

        assert len(web.calls) == 1
        message = web.calls[0]["message"]
        assert message.title == "New Bills Detected"
        assert message.body == "2 new bills added, 1 needs review"

    @pytest.mark.asyncio
    async def test_no_push_when_push_disabled(self, session_factory, db_session):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        add_push_subscription(db_session, user, "https://push.example/a")
        web, channels = push_channels()
        pipeline = FakeSyncPipeline(result=SyncResult(success=True, bills_created=1))

        await AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=pipeline, channels=channels
        ).run(now=NOW)

        assert web.calls == []

    @pytest.mark.asyncio
    async def test_no_push_when_nothing_found(self, session_factory, db_session):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        store_settings(db_session, user, push_enabled=True)
        add_push_subscription(db_session, user, "https://push.example/a")
        web, channels = push_channels()

        await AutoSyncOrchestrator(
            session_factory=session_factory, pipeline=FakeSyncPipeline(), channels=channels
        ).run(now=NOW)

        assert web.calls == []


def test_sync_stats(db_session):
    user = make_user(db_session)
    add_mailbox_connection(db_session, user)
    for offset, (status, created) in enumerate(
        [(SyncStatus.COMPLETED, 3), (SyncStatus.FAILED, 0), (SyncStatus.COMPLETED, 1)]
    ):
        db_session.add(
            SyncLog(
                user_id=user.id,
                sync_type=SyncType.AUTO,
                status=status,
                started_at=NOW - timedelta(hours=offset),
                bills_created=created,
            )
        )
    db_session.commit()

    result = sync_stats(db_session)

    assert result.stats["total"] == 3
    assert result.stats["completed"] == 2
    assert result.stats["failed"] == 1
    assert result.stats["bills_created"] == 4
    assert result.stats["connected_mailboxes"] == 1
    assert result.recent_logs[0]["started_at"] == NOW.isoformat()
