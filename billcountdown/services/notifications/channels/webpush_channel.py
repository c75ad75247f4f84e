import asyncio
import json
from typing import Dict, List, Sequence

from pywebpush import WebPushException, webpush

from billcountdown.services.notifications.channels.base import (
    ChannelSendResult,
    PushChannel,
    summarize_errors,
)
from billcountdown.services.notifications.messages import PushMessage
from billcountdown.utils.errors import DeliveryChannelError
from billcountdown.utils.logging import get_logger

logger = get_logger()

# Push services answer 404/410 for subscriptions that will never work again
GONE_STATUS_CODES = (404, 410)


class PushGoneError(Exception):
    """The push service no longer knows this subscription."""


class VapidWebPushChannel(PushChannel):
    """Browser push through the Web Push protocol with VAPID authentication."""

    name = "web_push"

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        ttl: int = 86400,
        timeout: float = 15.0,
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.ttl = ttl
        self.timeout = timeout

    def _check_configured(self) -> None:
        if not self.vapid_private_key:
            raise DeliveryChannelError("VAPID keys are not configured")

    async def send_message(
        self, targets: Sequence[Dict[str, str]], message: PushMessage
    ) -> ChannelSendResult:
        """
        Deliver one message to every subscription.

        Each target is a dict with `endpoint`, `p256dh` and `auth`. Expired
        endpoints are reported in `invalid_targets` so the caller can prune
        them.
        """
        if not targets:
            return ChannelSendResult()
        try:
            self._check_configured()
        except DeliveryChannelError as e:
            logger.error(f"Web push channel unavailable: {e.message}")
            return ChannelSendResult.all_failed(len(targets), e.message)

        payload = json.dumps(message.to_payload())
        sent = 0
        invalid: List[str] = []
        errors: Dict[str, str] = {}

        for subscription in targets:
            endpoint = subscription["endpoint"]
            try:
                # pywebpush is blocking (requests)
                await asyncio.to_thread(self._send_one, subscription, payload)
                sent += 1
            except PushGoneError:
                invalid.append(endpoint)
                errors[endpoint] = "Subscription expired"
            except Exception as e:
                logger.warning(f"Web push to {endpoint[:60]} failed: {e}")
                errors[endpoint] = str(e) or e.__class__.__name__

        return ChannelSendResult(
            sent=sent,
            failed=len(targets) - sent,
            invalid_targets=invalid,
            error=summarize_errors(errors),
        )

    def _send_one(self, subscription: Dict[str, str], payload: str) -> None:
        subscription_info = {
            "endpoint": subscription["endpoint"],
            "keys": {"p256dh": subscription["p256dh"], "auth": subscription["auth"]},
        }
        try:
            webpush(
                subscription_info=subscription_info,
                data=payload,
                vapid_private_key=self.vapid_private_key,
                # webpush adds aud/exp to the claims dict, so pass a fresh one
                vapid_claims={"sub": self.vapid_subject},
                ttl=self.ttl,
                timeout=self.timeout,
                headers={"Urgency": "high"},
            )
        except WebPushException as e:
            response = getattr(e, "response", None)
            if response is not None and response.status_code in GONE_STATUS_CODES:
                raise PushGoneError(subscription["endpoint"]) from e
            raise
