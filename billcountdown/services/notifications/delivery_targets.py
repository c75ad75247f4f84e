from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billcountdown.db.models import ApnsToken, PushSubscription, User
from billcountdown.schemas.notification_schemas import DeliveryTargets
from billcountdown.utils.logging import get_logger

logger = get_logger()


def get_delivery_targets(db_session: Session, user_id: str) -> DeliveryTargets:
    """Email address, web push subscriptions and device tokens for one user."""
    email = db_session.execute(
        select(User.email).where(User.id == user_id)
    ).scalar_one_or_none()

    subscriptions = db_session.execute(
        select(PushSubscription)
        .where(PushSubscription.user_id == user_id)
        .order_by(PushSubscription.created_at)
    ).scalars().all()

    tokens = db_session.execute(
        select(ApnsToken.token)
        .where(ApnsToken.user_id == user_id)
        .order_by(ApnsToken.created_at)
    ).scalars().all()

    return DeliveryTargets(
        email=email or None,
        push_subscriptions=[
            {
                "endpoint": subscription.endpoint,
                "p256dh": subscription.p256dh_key,
                "auth": subscription.auth_key,
            }
            for subscription in subscriptions
        ],
        device_tokens=list(tokens),
    )


def _find_push_subscription(
    db_session: Session, user_id: str, endpoint: str
) -> Optional[PushSubscription]:
    return db_session.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    ).scalar_one_or_none()


def _find_device_token(
    db_session: Session, user_id: str, token: str
) -> Optional[ApnsToken]:
    return db_session.execute(
        select(ApnsToken).where(ApnsToken.user_id == user_id, ApnsToken.token == token)
    ).scalar_one_or_none()


def register_push_subscription(
    db_session: Session, user_id: str, endpoint: str, p256dh: str, auth: str
) -> PushSubscription:
    """Insert or refresh the keys of a browser subscription."""
    subscription = _find_push_subscription(db_session, user_id, endpoint)
    if subscription is None:
        subscription = PushSubscription(
            user_id=user_id, endpoint=endpoint, p256dh_key=p256dh, auth_key=auth
        )
        db_session.add(subscription)
        try:
            db_session.commit()
            return subscription
        except IntegrityError:
            # Registered concurrently; refresh the existing row instead
            db_session.rollback()
            subscription = _find_push_subscription(db_session, user_id, endpoint)

    subscription.p256dh_key = p256dh
    subscription.auth_key = auth
    db_session.commit()
    return subscription


def remove_push_subscription(db_session: Session, user_id: str, endpoint: str) -> bool:
    result = db_session.execute(
        delete(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    )
    db_session.commit()
    return result.rowcount > 0


def register_device_token(
    db_session: Session, user_id: str, token: str, device_id: Optional[str] = None
) -> ApnsToken:
    """Insert a native push token, or refresh its device id."""
    apns_token = _find_device_token(db_session, user_id, token)
    if apns_token is None:
        apns_token = ApnsToken(user_id=user_id, token=token, device_id=device_id)
        db_session.add(apns_token)
        try:
            db_session.commit()
            return apns_token
        except IntegrityError:
            db_session.rollback()
            apns_token = _find_device_token(db_session, user_id, token)

    if device_id is not None:
        apns_token.device_id = device_id
    db_session.commit()
    return apns_token


def remove_device_token(db_session: Session, user_id: str, token: str) -> bool:
    result = db_session.execute(
        delete(ApnsToken).where(ApnsToken.user_id == user_id, ApnsToken.token == token)
    )
    db_session.commit()
    return result.rowcount > 0


def prune_push_subscriptions(
    db_session: Session, user_id: str, endpoints: Iterable[str]
) -> int:
    """Hard delete subscriptions the push service reported as gone."""
    endpoints = list(endpoints)
    if not endpoints:
        return 0
    result = db_session.execute(
        delete(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint.in_(endpoints),
        )
    )
    db_session.commit()
    logger.info(
        f"Pruned {result.rowcount} expired push subscription(s) for user {user_id}"
    )
    return result.rowcount


def prune_device_tokens(db_session: Session, user_id: str, tokens: Iterable[str]) -> int:
    """Hard delete device tokens APNs reported as unregistered or malformed."""
    tokens = list(tokens)
    if not tokens:
        return 0
    result = db_session.execute(
        delete(ApnsToken).where(
            ApnsToken.user_id == user_id, ApnsToken.token.in_(tokens)
        )
    )
    db_session.commit()
    logger.info(f"Pruned {result.rowcount} invalid device token(s) for user {user_id}")
    return result.rowcount
