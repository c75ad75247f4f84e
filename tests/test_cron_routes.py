from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from billcountdown.config.settings import settings
from billcountdown.db.models import QueueStatus
from billcountdown.db.session import get_session_factory, get_sync_session
from billcountdown.main import create_application
from billcountdown.services.notifications.channels import get_delivery_channels
from billcountdown.services.sync.mailbox_sync import get_mailbox_sync_pipeline
from billcountdown.utils.errors import DeliveryChannelError
from tests.factories import (
    add_mailbox_connection,
    add_queue_item,
    make_bill,
    make_user,
    queue_rows,
)

CRON_SECRET = "test-cron-secret"
AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def client(monkeypatch, session_factory, fake_channels, fake_pipeline):
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    app = create_application()

    def override_session():
        with session_factory() as session:
            yield session

    app.dependency_overrides[get_sync_session] = override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_delivery_channels] = lambda: fake_channels
    app.dependency_overrides[get_mailbox_sync_pipeline] = lambda: fake_pipeline
    return TestClient(app)


def due_reminder(db_session):
    user = make_user(db_session)
    bill = make_bill(db_session, user, date.today() + timedelta(days=2))
    add_queue_item(db_session, bill, datetime(2026, 1, 5, 14, 0))
    return bill


class TestCronAuthentication:
    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": "Bearer wrong-secret"},
            {"Authorization": CRON_SECRET},
            {"Authorization": f"Basic {CRON_SECRET}"},
        ],
    )
    def test_rejects_missing_or_wrong_secret(self, client, db_session, headers):
        bill = due_reminder(db_session)

        response = client.post("/api/cron/send-bill-reminders", headers=headers)

        body = response.json()
        assert response.status_code == 401
        assert body["success"] is False
        assert body["meta"]["error_code"] == "UNAUTHORIZED"
        # Nothing was drained
        assert queue_rows(db_session, bill.id)[0].status == QueueStatus.PENDING

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/cron/send-bill-reminders"),
            ("post", "/api/cron/auto-sync-bills"),
            ("get", "/api/cron/auto-sync-bills"),
            ("post", "/api/cron/daily-tasks"),
        ],
    )
    def test_every_trigger_is_guarded(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 401

    def test_health_is_public(self, client):
        response = client.get("/api/shared/health/")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "healthy"


class TestReminderRoutes:
    def test_drains_due_reminders(self, client, db_session, fake_channels):
        bill = due_reminder(db_session)

        response = client.post("/api/cron/send-bill-reminders", headers=AUTH)

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == "Processed 1 notifications"
        assert body["data"]["sent"] == 1
        assert response.headers["X-Request-ID"] == body["request_id"]
        assert fake_channels.email.calls[0]["bill_id"] == bill.id
        assert queue_rows(db_session, bill.id)[0].status == QueueStatus.SENT

    def test_empty_queue(self, client):
        response = client.post("/api/cron/send-bill-reminders", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["message"] == "No pending notifications"
        assert response.json()["data"]["processed"] == 0

    def test_queue_stats(self, client, db_session):
        due_reminder(db_session)

        response = client.get("/api/cron/send-bill-reminders", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["data"]["pending"] == 1

    def test_misconfigured_channel_returns_error_envelope(self, client):
        def missing_channels():
            raise DeliveryChannelError("RESEND_API_KEY is not configured")

        client.app.dependency_overrides[get_delivery_channels] = missing_channels

        response = client.post("/api/cron/send-bill-reminders", headers=AUTH)

        body = response.json()
        assert response.status_code == 500
        assert body["success"] is False
        assert body["message"] == "RESEND_API_KEY is not configured"
        assert body["meta"]["error_code"] == "CHANNEL_ERROR"


class TestAutoSyncRoutes:
    def test_runs_auto_sync(self, client, db_session, fake_pipeline):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)

        response = client.post("/api/cron/auto-sync-bills", headers=AUTH)

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == "Auto-synced 1 users"
        assert body["data"]["success"] == 1
        assert fake_pipeline.calls == [user.id]

    def test_nothing_to_sync(self, client):
        response = client.post("/api/cron/auto-sync-bills", headers=AUTH)

        assert response.json()["message"] == "No users need syncing"

    def test_sync_stats(self, client, db_session):
        user = make_user(db_session)
        add_mailbox_connection(db_session, user)
        client.post("/api/cron/auto-sync-bills", headers=AUTH)

        response = client.get("/api/cron/auto-sync-bills", headers=AUTH)

        stats = response.json()["data"]["stats"]
        assert stats["total"] == 1
        assert stats["completed"] == 1
        assert stats["connected_mailboxes"] == 1


def test_daily_tasks_runs_both_jobs(client, db_session, fake_channels, fake_pipeline):
    bill = due_reminder(db_session)
    add_mailbox_connection(db_session, bill.user)

    response = client.post("/api/cron/daily-tasks", headers=AUTH)

    data = response.json()["data"]
    assert response.status_code == 200
    assert data["reminders"]["sent"] == 1
    assert data["auto_sync"]["success"] == 1
    assert data["errors"] == []
    assert len(fake_channels.email.calls) == 1
    assert len(fake_pipeline.calls) == 1
