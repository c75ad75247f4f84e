from .base import ChannelSendResult, EmailChannel, PushChannel
from .registry import DeliveryChannels, get_delivery_channels

__all__ = [
    "ChannelSendResult",
    "EmailChannel",
    "PushChannel",
    "DeliveryChannels",
    "get_delivery_channels",
]
