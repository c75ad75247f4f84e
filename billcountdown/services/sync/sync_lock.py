import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billcountdown.config.settings import settings
from billcountdown.db.models import SyncLock
from billcountdown.utils.datetime_utils import naive_utc_now, to_naive_utc
from billcountdown.utils.logging import get_logger

logger = get_logger()

MAILBOX_SYNC_LOCK_PREFIX = "mailbox-sync"


def mailbox_sync_lock_key(user_id: str) -> str:
    return f"{MAILBOX_SYNC_LOCK_PREFIX}:{user_id}"


class SyncLockService:
    """
    Lease-based mutual exclusion stored in the database.

    A lease is held by `owner_id` until `expires_at`; after that any owner may
    take it over, so a crashed holder strands the key for at most one TTL.
    """

    def __init__(self, db_session: Session, owner_id: Optional[str] = None):
        self.db = db_session
        self.owner_id = owner_id or uuid.uuid4().hex

    def acquire(
        self, key: str, ttl_seconds: Optional[int] = None, now: Optional[datetime] = None
    ) -> bool:
        now = to_naive_utc(now) if now is not None else naive_utc_now()
        ttl = ttl_seconds or settings.SYNC_LOCK_TTL_SECONDS
        expires_at = now + timedelta(seconds=ttl)

        try:
            self.db.execute(
                insert(SyncLock).values(
                    lock_key=key,
                    owner_id=self.owner_id,
                    acquired_at=now,
                    expires_at=expires_at,
                )
            )
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()

        # Held already; take it over only if the lease has run out
        result = self.db.execute(
            update(SyncLock)
            .where(SyncLock.lock_key == key, SyncLock.expires_at <= now)
            .values(owner_id=self.owner_id, acquired_at=now, expires_at=expires_at)
        )
        self.db.commit()
        if result.rowcount == 1:
            logger.warning(f"Took over expired lock {key}")
            return True
        return False

    def release(self, key: str) -> bool:
        """Delete the lease if this owner still holds it."""
        result = self.db.execute(
            delete(SyncLock).where(
                SyncLock.lock_key == key, SyncLock.owner_id == self.owner_id
            )
        )
        self.db.commit()
        if result.rowcount == 0:
            logger.warning(f"Lock {key} was no longer held by {self.owner_id}")
        return result.rowcount == 1
