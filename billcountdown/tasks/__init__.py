from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "send_bill_reminders_task",
    "auto_sync_bills_task",
]
