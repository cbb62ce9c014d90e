"""Tests for the subscription state machine and payment verification."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from mento.database import SUBSCRIPTIONS_TABLE, WORKER_PROFILES_TABLE
from mento.errors import BadRequest, InvalidSignature, NotFound
from mento.payments import compute_payment_signature, verify_payment_signature
from mento.subscriptions import (
    SubscriptionService,
    SubscriptionStatus,
    SubscriptionType,
    get_plan_config,
    plan_tier_rank,
)

def _sign(gateway, order_id: str, payment_id: str) -> str:
    return compute_payment_signature(gateway.key_secret, order_id, payment_id)


def _flip_last_bit(signature: str) -> str:
    return signature[:-1] + format(int(signature[-1], 16) ^ 1, "x")


async def _create(db, gateway, user_id, plan="silver", sub_type=SubscriptionType.worker):
    return await SubscriptionService.create_subscription(db, gateway, user_id, sub_type, plan)


async def _activate(db, gateway, user_id, sub, order, payment_id="pay_1", now=None):
    return await SubscriptionService.verify_payment(
        db,
        gateway,
        user_id,
        sub.subscription_type,
        sub.id,
        order.id,
        payment_id,
        _sign(gateway, order.id, payment_id),
        now=now,
    )


class TestSignature:
    def test_matches_known_hmac(self):
        import hashlib
        import hmac

        expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
        assert compute_payment_signature("secret", "order_1", "pay_1") == expected
        assert verify_payment_signature("secret", "order_1", "pay_1", expected)

    def test_single_bit_flip_rejected(self):
        good = compute_payment_signature("secret", "order_1", "pay_1")
        assert not verify_payment_signature("secret", "order_1", "pay_1", _flip_last_bit(good))

    def test_swapped_ids_rejected(self):
        good = compute_payment_signature("secret", "order_1", "pay_1")
        assert not verify_payment_signature("secret", "pay_1", "order_1", good)

    def test_wrong_secret_rejected(self):
        good = compute_payment_signature("secret", "order_1", "pay_1")
        assert not verify_payment_signature("other", "order_1", "pay_1", good)


class TestLogging:
    def test_loggers_share_the_mento_namespace(self):
        from mento.payments import razorpay
        from mento.subscriptions import service

        assert razorpay.logger.name == "mento.payments"
        assert service.logger.name == "mento.subscriptions"


class TestPlans:
    def test_amounts_in_paise(self):
        assert get_plan_config(SubscriptionType.worker, "gold").amount_minor == 200
        assert get_plan_config(SubscriptionType.job_seeker, "basic").amount_minor == 50
        assert get_plan_config(SubscriptionType.worker, "silver").price == Decimal("1.00")

    def test_unknown_plan(self):
        with pytest.raises(KeyError):
            get_plan_config(SubscriptionType.worker, "platinum")

    def test_tier_rank(self):
        assert plan_tier_rank("gold") > plan_tier_rank("silver") > plan_tier_rank("none")
        assert plan_tier_rank(None) == 0


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_pending_payment(self, db, gateway, user):
        sub, order = await _create(db, gateway, user["id"])

        assert sub.status == SubscriptionStatus.pending_payment
        assert sub.gateway_order_id == order.id
        assert sub.starts_at is None and sub.expires_at is None
        gateway.create_order.assert_awaited_once()
        assert gateway.create_order.await_args.args[0] == 100

    @pytest.mark.asyncio
    async def test_invalid_plan(self, db, gateway, user):
        with pytest.raises(BadRequest, match="Invalid plan"):
            await _create(db, gateway, user["id"], plan="gold", sub_type=SubscriptionType.job_seeker)
        gateway.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refused_while_active(self, db, gateway, user):
        sub, order = await _create(db, gateway, user["id"])
        await _activate(db, gateway, user["id"], sub, order)

        with pytest.raises(BadRequest, match="already have an active"):
            await _create(db, gateway, user["id"], plan="gold")

    @pytest.mark.asyncio
    async def test_other_type_unaffected(self, db, gateway, user):
        sub, order = await _create(db, gateway, user["id"])
        await _activate(db, gateway, user["id"], sub, order)

        seeker, _ = await _create(db, gateway, user["id"], plan="basic", sub_type=SubscriptionType.job_seeker)
        assert seeker.status == SubscriptionStatus.pending_payment


class TestVerify:
    @pytest.mark.asyncio
    async def test_activation_sets_period(self, db, gateway, user):
        now = datetime(2026, 5, 1, tzinfo=timezone.utc)
        sub, order = await _create(db, gateway, user["id"])

        active = await _activate(db, gateway, user["id"], sub, order, now=now)

        assert active.status == SubscriptionStatus.active
        assert active.payment_id == "pay_1"
        assert active.starts_at == now
        assert active.expires_at == now + timedelta(days=365)

    @pytest.mark.asyncio
    async def test_invalid_signature_writes_nothing(self, db, gateway, user):
        sub, order = await _create(db, gateway, user["id"])
        bad = _flip_last_bit(_sign(gateway, order.id, "pay_1"))

        with pytest.raises(InvalidSignature):
            await SubscriptionService.verify_payment(
                db, gateway, user["id"], SubscriptionType.worker, sub.id, order.id, "pay_1", bad
            )
        assert db.find(SUBSCRIPTIONS_TABLE, id=sub.id)["status"] == "pending_payment"

    @pytest.mark.asyncio
    async def test_order_from_another_subscription(self, db, gateway, user):
        sub, _ = await _create(db, gateway, user["id"])
        # A correctly signed payment for an unrelated order
        with pytest.raises(InvalidSignature):
            await SubscriptionService.verify_payment(
                db,
                gateway,
                user["id"],
                SubscriptionType.worker,
                sub.id,
                "order_other",
                "pay_1",
                _sign(gateway, "order_other", "pay_1"),
            )

    @pytest.mark.asyncio
    async def test_not_owned_is_not_found(self, db, gateway, make_user):
        owner, intruder = make_user(), make_user()
        sub, order = await _create(db, gateway, owner["id"])

        with pytest.raises(NotFound):
            await _activate(db, gateway, intruder["id"], sub, order)
        assert db.find(SUBSCRIPTIONS_TABLE, id=sub.id)["status"] == "pending_payment"

    @pytest.mark.asyncio
    async def test_wrong_type_is_not_found(self, db, gateway, user):
        sub, order = await _create(db, gateway, user["id"])
        with pytest.raises(NotFound):
            await SubscriptionService.verify_payment(
                db,
                gateway,
                user["id"],
                SubscriptionType.job_seeker,
                sub.id,
                order.id,
                "pay_1",
                _sign(gateway, order.id, "pay_1"),
            )

    @pytest.mark.asyncio
    async def test_repeat_verify_is_idempotent(self, db, gateway, user):
        sub, order = await _create(db, gateway, user["id"])
        first = await _activate(db, gateway, user["id"], sub, order)
        second = await _activate(db, gateway, user["id"], sub, order)
        assert second.id == first.id
        assert second.expires_at == first.expires_at

    @pytest.mark.asyncio
    async def test_second_pending_cannot_become_active(self, db, gateway, user):
        """Two orders opened before either was paid; only one may activate."""
        first, first_order = await _create(db, gateway, user["id"])
        second, second_order = await _create(db, gateway, user["id"], plan="gold")
        await _activate(db, gateway, user["id"], first, first_order)

        with pytest.raises(BadRequest):
            await _activate(db, gateway, user["id"], second, second_order, payment_id="pay_2")

        active = [
            row
            for row in db.rows(SUBSCRIPTIONS_TABLE)
            if row["user_id"] == user["id"] and row["status"] == "active"
        ]
        assert len(active) == 1

    @pytest.mark.asyncio
    async def test_cancelled_cannot_be_activated(self, db, gateway, user):
        sub, order = await _create(db, gateway, user["id"])
        await SubscriptionService.cancel_subscription(db, user["id"], SubscriptionType.worker, sub.id)
        with pytest.raises(BadRequest):
            await _activate(db, gateway, user["id"], sub, order)

    @pytest.mark.asyncio
    async def test_activation_updates_profile_tier(self, db, gateway, user):
        db.seed(WORKER_PROFILES_TABLE, user_id=user["id"], name="Asha", subscription_plan="silver")
        sub, order = await _create(db, gateway, user["id"], plan="gold")
        await _activate(db, gateway, user["id"], sub, order)
        assert db.find(WORKER_PROFILES_TABLE, user_id=user["id"])["subscription_plan"] == "gold"


class TestExpiry:
    @pytest.mark.asyncio
    async def test_read_time_expiry(self, db, gateway, user):
        start = datetime.now(timezone.utc) - timedelta(days=400)
        db.seed(WORKER_PROFILES_TABLE, user_id=user["id"], name="Asha", subscription_plan="silver")
        sub, order = await _create(db, gateway, user["id"])
        await _activate(db, gateway, user["id"], sub, order, now=start)

        current = await SubscriptionService.get_active_subscription(
            db, user["id"], SubscriptionType.worker
        )

        assert current is None
        assert db.find(SUBSCRIPTIONS_TABLE, id=sub.id)["status"] == "expired"
        assert db.find(WORKER_PROFILES_TABLE, user_id=user["id"])["subscription_plan"] == "none"

    @pytest.mark.asyncio
    async def test_current_until_expiry_instant(self, db, gateway, user):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        sub, order = await _create(db, gateway, user["id"])
        await _activate(db, gateway, user["id"], sub, order, now=start)
        end = start + timedelta(days=365)

        just_before = await SubscriptionService.get_active_subscription(
            db, user["id"], SubscriptionType.worker, now=end - timedelta(seconds=1)
        )
        at_expiry = await SubscriptionService.get_active_subscription(
            db, user["id"], SubscriptionType.worker, now=end
        )

        assert just_before is not None
        assert at_expiry is None

    @pytest.mark.asyncio
    async def test_sweep(self, db, gateway, make_user):
        lapsed_user, current_user = make_user(), make_user()
        old = datetime.now(timezone.utc) - timedelta(days=366)
        lapsed, order = await _create(db, gateway, lapsed_user["id"])
        await _activate(db, gateway, lapsed_user["id"], lapsed, order, now=old)
        fresh, order = await _create(db, gateway, current_user["id"])
        await _activate(db, gateway, current_user["id"], fresh, order)

        preview = await SubscriptionService.expire_overdue_subscriptions(db, dry_run=True)
        assert preview == [lapsed.id]
        assert db.find(SUBSCRIPTIONS_TABLE, id=lapsed.id)["status"] == "active"

        expired = await SubscriptionService.expire_overdue_subscriptions(db)
        assert expired == [lapsed.id]
        assert db.find(SUBSCRIPTIONS_TABLE, id=lapsed.id)["status"] == "expired"
        assert db.find(SUBSCRIPTIONS_TABLE, id=fresh.id)["status"] == "active"

    @pytest.mark.asyncio
    async def test_resubscribe_after_expiry(self, db, gateway, user):
        old = datetime.now(timezone.utc) - timedelta(days=366)
        sub, order = await _create(db, gateway, user["id"])
        await _activate(db, gateway, user["id"], sub, order, now=old)

        renewed, renewed_order = await _create(db, gateway, user["id"], plan="gold")
        active = await _activate(db, gateway, user["id"], renewed, renewed_order, payment_id="pay_2")
        assert active.status == SubscriptionStatus.active


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_active_resets_profile(self, db, gateway, user):
        db.seed(WORKER_PROFILES_TABLE, user_id=user["id"], name="Asha", subscription_plan="none")
        sub, order = await _create(db, gateway, user["id"])
        await _activate(db, gateway, user["id"], sub, order)

        cancelled = await SubscriptionService.cancel_subscription(
            db, user["id"], SubscriptionType.worker, sub.id
        )

        assert cancelled.status == SubscriptionStatus.cancelled
        assert cancelled.cancelled_at is not None
        assert db.find(WORKER_PROFILES_TABLE, user_id=user["id"])["subscription_plan"] == "none"

    @pytest.mark.asyncio
    async def test_cancel_twice(self, db, gateway, user):
        sub, _ = await _create(db, gateway, user["id"])
        await SubscriptionService.cancel_subscription(db, user["id"], SubscriptionType.worker, sub.id)
        with pytest.raises(BadRequest, match="already cancelled"):
            await SubscriptionService.cancel_subscription(db, user["id"], SubscriptionType.worker, sub.id)


class TestSubscriptionRoutes:
    def test_purchase_flow(self, client, gateway, user, auth_headers):
        created = client.post("/api/subscriptions/worker/create/gold", headers=auth_headers)
        assert created.status_code == 200
        payload = created.json()["data"]
        assert payload["order"]["amount"] == 200
        assert payload["order"]["key_id"] == gateway.key_id
        order_id = payload["order"]["order_id"]

        verified = client.post(
            "/api/subscriptions/worker/verify",
            headers=auth_headers,
            json={
                "subscription_id": payload["subscription"]["id"],
                "razorpay_order_id": order_id,
                "razorpay_payment_id": "pay_9",
                "razorpay_signature": _sign(gateway, order_id, "pay_9"),
            },
        )
        assert verified.status_code == 200
        assert verified.json()["data"]["status"] == "active"

        status = client.get("/api/subscriptions/worker/status", headers=auth_headers)
        assert status.json()["data"]["has_subscription"] is True

    def test_bad_signature_is_400(self, client, user, auth_headers):
        created = client.post("/api/subscriptions/jobseeker/create/basic", headers=auth_headers)
        payload = created.json()["data"]
        response = client.post(
            "/api/subscriptions/jobseeker/verify",
            headers=auth_headers,
            json={
                "subscription_id": payload["subscription"]["id"],
                "razorpay_order_id": payload["order"]["order_id"],
                "razorpay_payment_id": "pay_9",
                "razorpay_signature": "deadbeef",
            },
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid payment signature"

    def test_unknown_type_rejected(self, client, auth_headers):
        response = client.post("/api/subscriptions/customer/create/gold", headers=auth_headers)
        assert response.status_code == 400

    def test_cancel_route(self, client, auth_headers):
        created = client.post("/api/subscriptions/worker/create/silver", headers=auth_headers)
        sub_id = created.json()["data"]["subscription"]["id"]
        response = client.post(f"/api/subscriptions/worker/{sub_id}/cancel", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"
