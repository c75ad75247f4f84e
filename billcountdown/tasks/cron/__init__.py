from .auto_sync_bills import auto_sync_bills_task
from .send_bill_reminders import send_bill_reminders_task

__all__ = [
    "send_bill_reminders_task",
    "auto_sync_bills_task",
]
