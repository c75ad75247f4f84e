import asyncio
from typing import Any, Awaitable, Callable, Sequence

from sqlalchemy.orm import Session

from billcountdown.schemas.notification_schemas import DeliveryTargets
from billcountdown.services.notifications.channels import (
    ChannelSendResult,
    DeliveryChannels,
    PushChannel,
)
from billcountdown.services.notifications.delivery_targets import (
    prune_device_tokens,
    prune_push_subscriptions,
)
from billcountdown.utils.logging import get_logger

logger = get_logger()

PushCall = Callable[[PushChannel, Sequence[Any]], Awaitable[ChannelSendResult]]


async def send_with_timeout(
    call: Awaitable[ChannelSendResult], target_count: int, timeout: float
) -> ChannelSendResult:
    """Bound one adapter call; a timeout fails every target of that call."""
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        return ChannelSendResult.all_failed(target_count, f"Timed out after {timeout:g}s")


async def fan_out_push(
    db_session: Session,
    user_id: str,
    targets: DeliveryTargets,
    channels: DeliveryChannels,
    send: PushCall,
    timeout: float,
) -> ChannelSendResult:
    """
    Send through web push and APNs, whichever has targets, and sum the results.

    Targets an adapter reports as invalid are deleted right away and removed
    from `targets`, whether or not anything else was delivered.
    """
    result = ChannelSendResult()

    subscriptions = list(targets.push_subscriptions)
    if subscriptions:
        web_result = await send_with_timeout(
            send(channels.web_push, subscriptions), len(subscriptions), timeout
        )
        if web_result.invalid_targets:
            prune_push_subscriptions(db_session, user_id, web_result.invalid_targets)
            gone = set(web_result.invalid_targets)
            targets.push_subscriptions = [
                s for s in targets.push_subscriptions if s["endpoint"] not in gone
            ]
        result = result.merge(web_result)

    tokens = list(targets.device_tokens)
    if tokens:
        native_result = await send_with_timeout(
            send(channels.native_push, tokens), len(tokens), timeout
        )
        if native_result.invalid_targets:
            prune_device_tokens(db_session, user_id, native_result.invalid_targets)
            gone = set(native_result.invalid_targets)
            targets.device_tokens = [t for t in targets.device_tokens if t not in gone]
        result = result.merge(native_result)

    return result
