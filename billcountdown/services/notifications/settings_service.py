import json
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from billcountdown.db.models import UserPreference
from billcountdown.schemas.notification_schemas import (
    DEFAULT_NOTIFICATION_SETTINGS,
    NotificationSettings,
)
from billcountdown.utils.logging import get_logger

logger = get_logger()

_FIELD_BY_ALIAS = {
    field.alias: name
    for name, field in NotificationSettings.model_fields.items()
    if field.alias
}
_NULLABLE = {"quiet_start", "quiet_end"}


def _load_stored(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        stored = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return stored if isinstance(stored, dict) else {}


def merge_with_defaults(stored: Dict[str, Any]) -> NotificationSettings:
    """
    Overlay stored keys on the defaults.

    Keys that fail validation are dropped individually so that one bad value
    (for example a retired timezone name) does not discard the rest.
    """
    merged = DEFAULT_NOTIFICATION_SETTINGS.model_dump()
    for key, value in stored.items():
        # Accept both snake_case and camelCase keys
        field_name = _FIELD_BY_ALIAS.get(key, key)
        if field_name not in merged or (value is None and field_name not in _NULLABLE):
            continue
        candidate = {**merged, field_name: value}
        try:
            NotificationSettings.model_validate(candidate)
        except ValidationError:
            logger.warning(f"Ignoring invalid stored notification setting: {key}")
            continue
        merged = candidate
    return NotificationSettings.model_validate(merged)


class NotificationSettingsService:
    def __init__(self, db_session: Session):
        self.db = db_session

    def resolve(self, user_id: str) -> NotificationSettings:
        """Effective settings for one user; defaults when nothing is stored."""
        raw = self.db.execute(
            select(UserPreference.notification_settings).where(
                UserPreference.user_id == user_id
            )
        ).scalar_one_or_none()
        return merge_with_defaults(_load_stored(raw))

    def resolve_many(self, user_ids: Iterable[str]) -> Dict[str, NotificationSettings]:
        """Batched resolve; every requested id gets an entry."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        rows = self.db.execute(
            select(UserPreference.user_id, UserPreference.notification_settings).where(
                UserPreference.user_id.in_(ids)
            )
        ).all()
        stored = {user_id: raw for user_id, raw in rows}
        return {
            user_id: merge_with_defaults(_load_stored(stored.get(user_id)))
            for user_id in ids
        }

    def update(self, user_id: str, changes: Dict[str, Any]) -> NotificationSettings:
        """
        Validate and persist a partial settings update, then reschedule every
        unpaid bill of the user so pending reminders reflect the new values.

        Raises:
            ValueError: If the resulting settings are invalid
        """
        current = self.resolve(user_id).model_dump()
        for key, value in changes.items():
            field_name = _FIELD_BY_ALIAS.get(key, key)
            if field_name not in current:
                raise ValueError(f"Unknown notification setting: {key}")
            current[field_name] = value

        try:
            updated = NotificationSettings.model_validate(current)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ValueError(f"Invalid notification setting {field}: {first['msg']}")

        preference = self.db.execute(
            select(UserPreference).where(UserPreference.user_id == user_id)
        ).scalar_one_or_none()
        payload = json.dumps(updated.model_dump())
        if preference is None:
            self.db.add(
                UserPreference(user_id=user_id, notification_settings=payload)
            )
        else:
            preference.notification_settings = payload
        self.db.commit()

        logger.info(f"Updated notification settings for user {user_id}")

        # Import here to avoid circular imports
        from billcountdown.services.notifications.scheduler import (
            NotificationScheduler,
        )

        NotificationScheduler(self.db).reschedule_user(user_id, settings=updated)
        return updated


def resolve_settings(db_session: Session, user_id: str) -> NotificationSettings:
    return NotificationSettingsService(db_session).resolve(user_id)


def resolve_settings_for_users(
    db_session: Session, user_ids: Iterable[str]
) -> Dict[str, NotificationSettings]:
    return NotificationSettingsService(db_session).resolve_many(user_ids)


def update_settings(
    db_session: Session, user_id: str, changes: Dict[str, Any]
) -> NotificationSettings:
    return NotificationSettingsService(db_session).update(user_id, changes)
