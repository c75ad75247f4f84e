import re
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from billcountdown.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from billcountdown.utils.datetime_utils import is_valid_timezone

QUIET_HOUR_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class NotificationSettings(BaseModel):
    """Per-user notification preferences as resolved at read time."""

    email_enabled: bool = Field(True, description="Send reminder emails")
    push_enabled: bool = Field(False, description="Send web and native push")
    lead_days: int = Field(
        3, ge=0, le=30, description="Days before the due date to send the reminder"
    )
    timezone: str = Field("America/New_York", description="IANA timezone name")
    auto_sync_enabled: bool = Field(True, description="Re-scan the mailbox daily")
    # Stored and validated only; neither the scheduler nor the drain reads them.
    quiet_start: Optional[str] = Field(None, description="Quiet hours start, HH:MM")
    quiet_end: Optional[str] = Field(None, description="Quiet hours end, HH:MM")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if not is_valid_timezone(v):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("quiet_start", "quiet_end")
    @classmethod
    def validate_quiet_hours(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not QUIET_HOUR_PATTERN.match(v):
            raise ValueError("Quiet hours must use HH:MM")
        return v


DEFAULT_NOTIFICATION_SETTINGS = NotificationSettings()


class ScheduleResult(BaseModel):
    scheduled: int = Field(0, description="Queue rows inserted")
    skipped: List[str] = Field(
        default_factory=list, description="Reasons channels were not scheduled"
    )
    scheduled_for: Optional[datetime] = Field(
        None, description="UTC instant the reminder fires at"
    )


class DrainSummary(BaseModel):
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    interrupted: int = Field(
        0, description="Stale claims resolved as failed at the start of the pass"
    )


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class DeliveryTargets(BaseModel):
    """Everything needed to reach one user on any channel."""

    email: Optional[str] = None
    push_subscriptions: List[Dict[str, str]] = Field(default_factory=list)
    device_tokens: List[str] = Field(default_factory=list)

    @property
    def has_push_targets(self) -> bool:
        return bool(self.push_subscriptions or self.device_tokens)
