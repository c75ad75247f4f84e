from typing import List, Optional
from datetime import datetime, date
import enum
import uuid

from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Float,
    Text,
    ForeignKey,
    Enum,
    Index,
    func,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
    Date,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


# Enums
class NotificationChannel(enum.Enum):
    EMAIL = "email"
    PUSH = "push"


class QueueStatus(enum.Enum):
    PENDING = "pending"
    # Interim state held by exactly one drain worker between claim and result
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncType(enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class SyncStatus(enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[Optional[str]] = mapped_column(String(320))  # RFC 5321 max length
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    bills: Mapped[List["Bill"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    preference: Mapped[Optional["UserPreference"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    push_subscriptions: Mapped[List["PushSubscription"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    apns_tokens: Mapped[List["ApnsToken"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    mailbox_connection: Mapped[Optional["MailboxConnection"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_users_email", "email"),)


class Bill(Base, AuditMixin):
    """Owned by the bill CRUD service; read-only here."""

    __tablename__ = "bills"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Optional[float]] = mapped_column(Float)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), default="💳", nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurrence_interval: Mapped[Optional[str]] = mapped_column(String(20))
    payment_url: Mapped[Optional[str]] = mapped_column(String(2048))

    # Relationships
    user: Mapped["User"] = relationship(back_populates="bills")

    __table_args__ = (
        Index("idx_bills_user_id", "user_id"),
        Index("idx_bills_user_paid", "user_id", "is_paid"),
        Index("idx_bills_due_date", "due_date"),
    )


class UserPreference(Base, AuditMixin):
    __tablename__ = "user_preferences"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    # JSON stored as Text - serialize/deserialize in application
    notification_settings: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="preference")


class PushSubscription(Base, AuditMixin):
    __tablename__ = "push_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    endpoint: Mapped[str] = mapped_column(String(1024), nullable=False)
    p256dh_key: Mapped[str] = mapped_column(String(255), nullable=False)
    auth_key: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="push_subscriptions")

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_push_sub_user_endpoint"),
        Index("idx_push_sub_user_id", "user_id"),
    )


class ApnsToken(Base, AuditMixin):
    __tablename__ = "apns_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(200), nullable=False)
    device_id: Mapped[Optional[str]] = mapped_column(String(200))

    # Relationships
    user: Mapped["User"] = relationship(back_populates="apns_tokens")

    __table_args__ = (
        UniqueConstraint("user_id", "token", name="uq_apns_token_user_token"),
        Index("idx_apns_token_user_id", "user_id"),
    )


class NotificationQueueItem(Base, AuditMixin):
    __tablename__ = "bill_notifications_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # Not enforced as a foreign key: resolved rows outlive the bill as an audit trail
    bill_id: Mapped[str] = mapped_column(String(36), nullable=False)
    channel: Mapped[NotificationChannel] = mapped_column(
        Enum(NotificationChannel), nullable=False
    )
    # Naive UTC
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    # Calendar day of scheduled_for in the user's timezone
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[QueueStatus] = mapped_column(
        Enum(QueueStatus), default=QueueStatus.PENDING, nullable=False
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint(
            "bill_id",
            "channel",
            "scheduled_date",
            name="uq_notif_queue_bill_channel_date",
        ),
        CheckConstraint(
            "sent_at IS NULL OR status = 'SENT'",
            name="ck_notif_queue_sent_at_only_when_sent",
        ),
        Index("idx_notif_queue_status_scheduled", "status", "scheduled_for"),
        Index("idx_notif_queue_bill_status", "bill_id", "status"),
        Index("idx_notif_queue_user_id", "user_id"),
    )


class MailboxConnection(Base, AuditMixin):
    __tablename__ = "mailbox_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    email: Mapped[Optional[str]] = mapped_column(String(320))
    # Last successful sync
    last_auto_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_auto_sync_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    auto_sync_error: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="mailbox_connection")

    __table_args__ = (
        Index("idx_mailbox_conn_last_sync", "last_auto_sync_at"),
    )


class SyncLock(Base):
    """Lease-based mutual exclusion row; a holder that dies loses it at expires_at."""

    __tablename__ = "sync_locks"

    lock_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("expires_at > acquired_at", name="ck_sync_locks_expiry"),
        Index("idx_sync_locks_expires_at", "expires_at"),
    )


class SyncLog(Base, AuditMixin):
    __tablename__ = "sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    sync_type: Mapped[SyncType] = mapped_column(Enum(SyncType), nullable=False)
    status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus), default=SyncStatus.RUNNING, nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    bills_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bills_needs_review: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_sync_logs_user_id", "user_id"),
        Index("idx_sync_logs_type_started", "sync_type", "started_at"),
    )
