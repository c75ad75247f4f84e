import base64
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
import jwt

from billcountdown.services.notifications.channels.base import (
    ChannelSendResult,
    PushChannel,
    summarize_errors,
)
from billcountdown.services.notifications.messages import PushMessage
from billcountdown.utils.errors import DeliveryChannelError
from billcountdown.utils.logging import get_logger

logger = get_logger()

PRODUCTION_HOST = "https://api.push.apple.com"
SANDBOX_HOST = "https://api.sandbox.push.apple.com"

# Reasons after which a device token will never be accepted again
INVALID_TOKEN_REASONS = {"Unregistered", "BadDeviceToken", "DeviceTokenNotForTopic"}

# Apple rejects provider tokens older than an hour
PROVIDER_TOKEN_LIFETIME = 50 * 60


def _decode_private_key(value: str) -> str:
    """Accept the .p8 key either as PEM text or base64 encoded PEM."""
    if "BEGIN PRIVATE KEY" in value:
        return value.replace("\\n", "\n")
    try:
        return base64.b64decode(value).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise DeliveryChannelError("APNS_PRIVATE_KEY is not valid base64") from e


class ApnsPushChannel(PushChannel):
    """Native iOS push through the APNs HTTP/2 provider API."""

    name = "apns"

    def __init__(
        self,
        private_key: str,
        key_id: str,
        team_id: str,
        bundle_id: str,
        use_sandbox: bool = True,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.private_key = private_key
        self.key_id = key_id
        self.team_id = team_id
        self.bundle_id = bundle_id
        self.host = SANDBOX_HOST if use_sandbox else PRODUCTION_HOST
        self.timeout = timeout
        self._transport = transport
        self._token: Optional[str] = None
        self._token_issued_at = 0.0

    def _check_configured(self) -> None:
        missing = [
            name
            for name, value in (
                ("APNS_PRIVATE_KEY", self.private_key),
                ("APNS_KEY_ID", self.key_id),
                ("APNS_TEAM_ID", self.team_id),
            )
            if not value
        ]
        if missing:
            raise DeliveryChannelError(f"APNs is not configured: {', '.join(missing)}")

    def _provider_token(self) -> str:
        now = time.time()
        if self._token is None or now - self._token_issued_at > PROVIDER_TOKEN_LIFETIME:
            try:
                self._token = jwt.encode(
                    {"iss": self.team_id, "iat": int(now)},
                    _decode_private_key(self.private_key),
                    algorithm="ES256",
                    headers={"kid": self.key_id},
                )
            except (ValueError, TypeError, jwt.PyJWTError) as e:
                raise DeliveryChannelError(f"Could not sign APNs token: {e}") from e
            self._token_issued_at = now
        return self._token

    def _build_payload(self, message: PushMessage) -> Dict[str, Any]:
        return {
            "aps": {
                "alert": {"title": message.title, "body": message.body},
                "sound": "default",
                "badge": 1,
                "thread-id": message.tag,
            },
            "url": message.url,
            **message.data,
        }

    async def send_message(
        self, targets: Sequence[str], message: PushMessage
    ) -> ChannelSendResult:
        if not targets:
            return ChannelSendResult()
        try:
            self._check_configured()
            token = self._provider_token()
        except DeliveryChannelError as e:
            logger.error(f"APNs channel unavailable: {e.message}")
            return ChannelSendResult.all_failed(len(targets), e.message)

        headers = {
            "authorization": f"bearer {token}",
            "apns-topic": self.bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
            "apns-expiration": str(int(time.time()) + 86400),
        }
        payload = self._build_payload(message)
        sent = 0
        invalid: List[str] = []
        errors: Dict[str, str] = {}

        async with httpx.AsyncClient(
            base_url=self.host,
            http2=True,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            for device_token in targets:
                try:
                    response = await client.post(
                        f"/3/device/{device_token}", json=payload, headers=headers
                    )
                except httpx.HTTPError as e:
                    errors[device_token] = str(e) or e.__class__.__name__
                    continue

                if response.status_code == 200:
                    sent += 1
                    continue

                reason = _response_reason(response)
                errors[device_token] = f"APNs {response.status_code}: {reason}"
                if response.status_code == 410 or reason in INVALID_TOKEN_REASONS:
                    invalid.append(device_token)

        if errors:
            logger.warning(f"APNs rejected {len(errors)} of {len(targets)} token(s)")

        return ChannelSendResult(
            sent=sent,
            failed=len(targets) - sent,
            invalid_targets=invalid,
            error=summarize_errors(errors),
        )


def _response_reason(response: httpx.Response) -> str:
    try:
        return response.json().get("reason", "Unknown")
    except ValueError:
        return response.text[:100] or "Unknown"
