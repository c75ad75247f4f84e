from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from billcountdown.db.models import Bill
from billcountdown.services.notifications.messages import (
    PushMessage,
    build_reminder_push,
)


@dataclass
class ChannelSendResult:
    """Per-call delivery outcome reported by every adapter."""

    sent: int = 0
    failed: int = 0
    # Recipient identifiers (endpoint or device token) that are permanently gone
    invalid_targets: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.sent > 0

    def merge(self, other: "ChannelSendResult") -> "ChannelSendResult":
        errors = [e for e in (self.error, other.error) if e]
        return ChannelSendResult(
            sent=self.sent + other.sent,
            failed=self.failed + other.failed,
            invalid_targets=self.invalid_targets + other.invalid_targets,
            error="; ".join(errors) or None,
        )

    @classmethod
    def all_failed(cls, count: int, error: str) -> "ChannelSendResult":
        return cls(failed=count, error=error)


class EmailChannel(ABC):
    """Transactional email transport."""

    name = "email"

    @abstractmethod
    async def send(
        self, target: str, bill: Bill, days_until_due: int
    ) -> ChannelSendResult:
        pass


class PushChannel(ABC):
    """Push transport fanning one message out to many targets."""

    name = "push"

    @abstractmethod
    async def send_message(
        self, targets: Sequence[Any], message: PushMessage
    ) -> ChannelSendResult:
        pass

    async def send(
        self, targets: Sequence[Any], bill: Bill, days_until_due: int
    ) -> ChannelSendResult:
        return await self.send_message(targets, build_reminder_push(bill, days_until_due))


def summarize_errors(errors: Dict[str, str], limit: int = 3) -> Optional[str]:
    """Collapse per-target errors into one message for the queue row."""
    if not errors:
        return None
    shown = list(errors.values())[:limit]
    extra = len(errors) - len(shown)
    message = "; ".join(shown)
    if extra > 0:
        message = f"{message} (+{extra} more)"
    return message
