from celery.schedules import crontab

from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["billcountdown.tasks"]

# Reminder times are computed per user; beat itself runs on UTC
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes
task_soft_time_limit = 25 * 60  # 25 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

task_acks_late = True
task_reject_on_worker_lost = True

beat_schedule = {
    # Drain due reminders every 5 minutes
    "send-bill-reminders": {
        "task": "billcountdown.tasks.cron.send_bill_reminders.send_bill_reminders_task",
        "schedule": crontab(minute="*/5"),
        "args": ("send_bill_reminders_cron",),
    },
    # Mailbox re-scan daily at 14:00 UTC (9am EST / 6am PST)
    "auto-sync-bills": {
        "task": "billcountdown.tasks.cron.auto_sync_bills.auto_sync_bills_task",
        "schedule": crontab(hour=14, minute=0),
        "args": ("auto_sync_bills_cron",),
    },
}

# Default Queue
task_default_queue = "billcountdown"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
