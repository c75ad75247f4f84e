from typing import Any, Dict, List, Optional

from pydantic import Field

from billcountdown.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class SyncOptions(BaseModel):
    sync_type: str = Field("auto", description="auto or manual")
    max_results: int = Field(100, description="Maximum messages to fetch")
    days_back: int = Field(2, description="How far back to scan the mailbox")


class SyncResult(BaseModel):
    """Outcome reported by the mailbox sync pipeline for one user."""

    success: bool
    sync_log_id: Optional[str] = None
    emails_fetched: int = 0
    emails_filtered: int = 0
    emails_processed: int = 0
    bills_created: int = 0
    bills_needs_review: int = 0
    error: Optional[str] = None


class UserSyncOutcome(BaseModel):
    user_id: str
    success: bool = False
    skipped: bool = False
    bills_created: int = 0
    needs_review: int = 0
    error: Optional[str] = None


class SyncSummary(BaseModel):
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    total_bills_created: int = 0
    total_needs_review: int = 0


class SyncStats(BaseModel):
    stats: Dict[str, int] = Field(default_factory=dict)
    recent_logs: List[Dict[str, Any]] = Field(default_factory=list)
