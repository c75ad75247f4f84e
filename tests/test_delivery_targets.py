from billcountdown.services.notifications.delivery_targets import (
    get_delivery_targets,
    prune_device_tokens,
    prune_push_subscriptions,
    register_device_token,
    register_push_subscription,
    remove_device_token,
    remove_push_subscription,
)
from tests.factories import add_device_token, add_push_subscription, make_user


class TestDeliveryTargets:
    def test_collects_every_target(self, db_session):
        user = make_user(db_session)
        add_push_subscription(db_session, user, "https://push.example/a")
        add_device_token(db_session, user, "apns-token-1")

        targets = get_delivery_targets(db_session, user.id)

        assert targets.email == "alex@example.com"
        assert targets.push_subscriptions == [
            {"endpoint": "https://push.example/a", "p256dh": "p256dh-key", "auth": "auth-key"}
        ]
        assert targets.device_tokens == ["apns-token-1"]
        assert targets.has_push_targets

    def test_user_without_targets(self, db_session):
        user = make_user(db_session, email=None)

        targets = get_delivery_targets(db_session, user.id)

        assert targets.email is None
        assert not targets.has_push_targets

    def test_other_users_targets_are_excluded(self, db_session):
        user = make_user(db_session)
        other = make_user(db_session, email="sam@example.com")
        add_push_subscription(db_session, other, "https://push.example/other")

        assert get_delivery_targets(db_session, user.id).push_subscriptions == []


class TestRegistration:
    def test_push_subscription_upsert_refreshes_keys(self, db_session):
        user = make_user(db_session)

        first = register_push_subscription(
            db_session, user.id, "https://push.example/a", "old-p256dh", "old-auth"
        )
        second = register_push_subscription(
            db_session, user.id, "https://push.example/a", "new-p256dh", "new-auth"
        )

        subscriptions = get_delivery_targets(db_session, user.id).push_subscriptions
        assert first.id == second.id
        assert subscriptions == [
            {"endpoint": "https://push.example/a", "p256dh": "new-p256dh", "auth": "new-auth"}
        ]

    def test_device_token_upsert_keeps_one_row(self, db_session):
        user = make_user(db_session)

        register_device_token(db_session, user.id, "apns-token-1")
        token = register_device_token(db_session, user.id, "apns-token-1", device_id="iphone")

        assert token.device_id == "iphone"
        assert get_delivery_targets(db_session, user.id).device_tokens == ["apns-token-1"]

    def test_remove(self, db_session):
        user = make_user(db_session)
        add_push_subscription(db_session, user, "https://push.example/a")
        add_device_token(db_session, user, "apns-token-1")

        assert remove_push_subscription(db_session, user.id, "https://push.example/a")
        assert remove_device_token(db_session, user.id, "apns-token-1")
        assert not remove_device_token(db_session, user.id, "apns-token-1")
        assert not get_delivery_targets(db_session, user.id).has_push_targets


class TestPruning:
    def test_prunes_only_listed_targets_of_that_user(self, db_session):
        user = make_user(db_session)
        other = make_user(db_session, email="sam@example.com")
        add_push_subscription(db_session, user, "https://push.example/gone")
        add_push_subscription(db_session, user, "https://push.example/live")
        add_push_subscription(db_session, other, "https://push.example/gone")
        add_device_token(db_session, user, "dead-token")
        add_device_token(db_session, user, "live-token")

        assert prune_push_subscriptions(db_session, user.id, ["https://push.example/gone"]) == 1
        assert prune_device_tokens(db_session, user.id, ["dead-token"]) == 1

        targets = get_delivery_targets(db_session, user.id)
        assert [s["endpoint"] for s in targets.push_subscriptions] == [
            "https://push.example/live"
        ]
        assert targets.device_tokens == ["live-token"]
        assert len(get_delivery_targets(db_session, other.id).push_subscriptions) == 1

    def test_empty_prune_is_a_no_op(self, db_session):
        user = make_user(db_session)

        assert prune_push_subscriptions(db_session, user.id, []) == 0
        assert prune_device_tokens(db_session, user.id, []) == 0
