from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from billcountdown.db.models import QueueStatus
from billcountdown.services.notifications.queue_drainer import QueueDrainer
from billcountdown.services.notifications.scheduler import NotificationScheduler
from tests.factories import make_bill, make_user, queue_rows, store_settings

NEW_YORK = ZoneInfo("America/New_York")


@pytest.mark.asyncio
async def test_reminder_is_scheduled_and_delivered_once(db_session, fake_channels):
    user = make_user(db_session)
    store_settings(
        db_session,
        user,
        emailEnabled=True,
        pushEnabled=False,
        leadDays=1,
        timezone="America/New_York",
    )
    bill = make_bill(db_session, user, date(2026, 3, 10))

    result = NotificationScheduler(db_session).reschedule_bill(
        bill, now=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    )

    rows = queue_rows(db_session, bill.id)
    assert result.scheduled == 1
    assert len(rows) == 1
    # 09:00 on 2026-03-09 in New York is daylight time, already past the switch
    local = rows[0].scheduled_for.replace(tzinfo=timezone.utc).astimezone(NEW_YORK)
    assert local == datetime(2026, 3, 9, 9, 0, tzinfo=NEW_YORK)
    assert local.utcoffset() == timedelta(hours=-4)
    assert rows[0].scheduled_date == date(2026, 3, 9)

    drainer = QueueDrainer(db_session, channels=fake_channels)
    early = await drainer.drain(now=datetime(2026, 3, 9, 12, 59, tzinfo=timezone.utc))
    assert early.processed == 0
    assert fake_channels.email.calls == []

    summary = await drainer.drain(
        now=datetime(2026, 3, 9, 13, 0, 1, tzinfo=timezone.utc)
    )

    row = queue_rows(db_session, bill.id)[0]
    assert summary.sent == 1
    assert row.status == QueueStatus.SENT
    assert row.sent_at is not None
    assert fake_channels.email.calls == [
        {"target": "alex@example.com", "bill_id": bill.id, "days_until_due": 1}
    ]

    again = await drainer.drain(now=datetime(2026, 3, 9, 13, 5, tzinfo=timezone.utc))
    assert again.processed == 0
    assert len(fake_channels.email.calls) == 1
