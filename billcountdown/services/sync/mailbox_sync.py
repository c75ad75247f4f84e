from abc import ABC, abstractmethod
from typing import Optional

import httpx

from billcountdown.config.settings import settings
from billcountdown.schemas.sync_schemas import SyncOptions, SyncResult
from billcountdown.utils.logging import get_logger

logger = get_logger()


class MailboxSyncPipeline(ABC):
    """Fetches a user's recent mail and turns bill emails into bills."""

    @abstractmethod
    async def perform_sync(self, user_id: str, options: SyncOptions) -> SyncResult:
        pass


class HttpMailboxSyncPipeline(MailboxSyncPipeline):
    """Calls the extraction service over HTTP, authenticated with the cron secret."""

    def __init__(
        self,
        url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.MAILBOX_SYNC_URL
        self.secret = secret or settings.CRON_SECRET
        self.timeout = timeout or settings.SYNC_TIMEOUT_SECONDS
        self._transport = transport

    async def perform_sync(self, user_id: str, options: SyncOptions) -> SyncResult:
        payload = {"userId": user_id, **options.model_dump(by_alias=True)}
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.secret}"},
            )

        if response.status_code >= 400:
            try:
                error = response.json().get("error") or response.text[:200]
            except ValueError:
                error = response.text[:200]
            logger.warning(f"Mailbox sync for user {user_id} returned {response.status_code}")
            return SyncResult(
                success=False, error=f"Sync service error {response.status_code}: {error}"
            )

        return SyncResult.model_validate(response.json())


def get_mailbox_sync_pipeline() -> MailboxSyncPipeline:
    return HttpMailboxSyncPipeline()
