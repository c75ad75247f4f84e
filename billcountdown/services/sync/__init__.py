from .auto_sync_orchestrator import AutoSyncOrchestrator, sync_stats
from .mailbox_sync import HttpMailboxSyncPipeline, MailboxSyncPipeline
from .sync_lock import SyncLockService

__all__ = [
    "AutoSyncOrchestrator",
    "sync_stats",
    "HttpMailboxSyncPipeline",
    "MailboxSyncPipeline",
    "SyncLockService",
]
