from .scheduler import NotificationScheduler, compute_scheduled_time
from .settings_service import NotificationSettingsService, resolve_settings
from .queue_drainer import QueueDrainer, queue_stats
from .sync_notifications import send_new_bills_push

__all__ = [
    "NotificationScheduler",
    "compute_scheduled_time",
    "NotificationSettingsService",
    "resolve_settings",
    "QueueDrainer",
    "queue_stats",
    "send_new_bills_push",
]
