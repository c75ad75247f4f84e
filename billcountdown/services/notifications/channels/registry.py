from dataclasses import dataclass
from typing import Optional

from billcountdown.config.settings import settings
from billcountdown.services.notifications.channels.apns_channel import ApnsPushChannel
from billcountdown.services.notifications.channels.base import (
    EmailChannel,
    PushChannel,
)
from billcountdown.services.notifications.channels.email_channel import (
    ResendEmailChannel,
)
from billcountdown.services.notifications.channels.webpush_channel import (
    VapidWebPushChannel,
)
from billcountdown.utils.logging import get_logger

logger = get_logger()


@dataclass
class DeliveryChannels:
    """The three transports a reminder can go out on."""

    email: EmailChannel
    web_push: PushChannel
    native_push: PushChannel

    @classmethod
    def from_settings(cls) -> "DeliveryChannels":
        """Build the production adapters from application settings"""
        timeout = settings.CHANNEL_SEND_TIMEOUT_SECONDS
        channels = cls(
            email=ResendEmailChannel(
                api_key=settings.RESEND_API_KEY,
                sender=settings.EMAIL_FROM,
                api_url=settings.RESEND_API_URL,
                timeout=timeout,
            ),
            web_push=VapidWebPushChannel(
                vapid_private_key=settings.VAPID_PRIVATE_KEY,
                vapid_subject=settings.VAPID_SUBJECT,
                timeout=timeout,
            ),
            native_push=ApnsPushChannel(
                private_key=settings.APNS_PRIVATE_KEY,
                key_id=settings.APNS_KEY_ID,
                team_id=settings.APNS_TEAM_ID,
                bundle_id=settings.APNS_BUNDLE_ID,
                use_sandbox=settings.APNS_USE_SANDBOX,
                timeout=timeout,
            ),
        )
        logger.debug("Delivery channels created from settings")
        return channels


_default_channels: Optional[DeliveryChannels] = None


def get_delivery_channels() -> DeliveryChannels:
    """Process-wide adapters; APNs provider tokens are cached on the instance."""
    global _default_channels
    if _default_channels is None:
        _default_channels = DeliveryChannels.from_settings()
    return _default_channels
