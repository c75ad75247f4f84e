from typing import Optional

import httpx

from billcountdown.db.models import Bill
from billcountdown.services.notifications.channels.base import (
    ChannelSendResult,
    EmailChannel,
)
from billcountdown.services.notifications.messages import build_reminder_email
from billcountdown.utils.errors import DeliveryChannelError
from billcountdown.utils.logging import get_logger

logger = get_logger()


class ResendEmailChannel(EmailChannel):
    """Reminder emails through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    def _check_configured(self) -> None:
        if not self.api_key:
            raise DeliveryChannelError("RESEND_API_KEY is not configured")
        if not self.sender:
            raise DeliveryChannelError("EMAIL_FROM is not configured")

    async def send(
        self, target: str, bill: Bill, days_until_due: int
    ) -> ChannelSendResult:
        try:
            self._check_configured()
        except DeliveryChannelError as e:
            logger.error(f"Email channel unavailable: {e.message}")
            return ChannelSendResult.all_failed(1, e.message)

        content = build_reminder_email(bill, days_until_due)
        payload = {
            "from": self.sender,
            "to": [target],
            "subject": content["subject"],
            "html": content["html"],
            "text": content["text"],
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error = f"Resend returned {e.response.status_code}: {e.response.text[:200]}"
            logger.warning(f"Reminder email for bill {bill.id} failed: {error}")
            return ChannelSendResult.all_failed(1, error)
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__
            logger.warning(f"Reminder email for bill {bill.id} failed: {error}")
            return ChannelSendResult.all_failed(1, error)

        logger.info(f"Sent reminder email for bill {bill.id}")
        return ChannelSendResult(sent=1)
