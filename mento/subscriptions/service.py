"""Subscription service: plan purchase, payment confirmation and expiry.

Lifecycle:

    pending_payment --verify--> active --(expires_at passes)--> expired
           |                      |
           +------cancel----------+--------> cancelled

The "one active subscription per (user, type)" rule is checked when an
order is created and enforced by a unique partial index on activation.
Every status change is a conditional update on the expected prior status.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from postgrest.exceptions import APIError
from supabase import Client

from ..database import (
    JOB_SEEKER_PROFILES_TABLE,
    SUBSCRIPTIONS_TABLE,
    WORKER_PROFILES_TABLE,
    is_unique_violation,
)
from ..errors import BadRequest, InternalError, InvalidSignature, NotFound
from ..logging_config import get_logger
from ..payments.razorpay import GatewayOrder, RazorpayClient
from .models import (
    Subscription,
    SubscriptionStatus,
    SubscriptionType,
    get_plan_config,
    plan_names,
)

logger = get_logger("mento.subscriptions")

PROFILE_TABLES = {
    SubscriptionType.worker: WORKER_PROFILES_TABLE,
    SubscriptionType.job_seeker: JOB_SEEKER_PROFILES_TABLE,
}

# Statuses a caller may cancel from
CANCELLABLE = (SubscriptionStatus.pending_payment, SubscriptionStatus.active)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Service
# =============================================================================


class SubscriptionService:
    """Stateless service; every method receives a Supabase `Client`."""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    async def get_subscription(db: Client, subscription_id: str) -> Subscription | None:
        """Fetch a subscription by id."""

        def _query():
            return (
                db.table(SUBSCRIPTIONS_TABLE)
                .select("*")
                .eq("id", subscription_id)
                .limit(1)
                .execute()
            )

        result = await asyncio.to_thread(_query)
        return Subscription(**result.data[0]) if result.data else None

    @staticmethod
    async def get_owned_subscription(
        db: Client,
        user_id: str,
        subscription_type: SubscriptionType,
        subscription_id: str,
    ) -> Subscription:
        """Fetch a subscription matching id, owner and type, else ``NotFound``.

        Rows owned by someone else are reported as missing, not forbidden.
        """

        def _query():
            return (
                db.table(SUBSCRIPTIONS_TABLE)
                .select("*")
                .eq("id", subscription_id)
                .eq("user_id", user_id)
                .eq("subscription_type", subscription_type.value)
                .limit(1)
                .execute()
            )

        result = await asyncio.to_thread(_query)
        if not result.data:
            raise NotFound("Subscription not found")
        return Subscription(**result.data[0])

    @staticmethod
    async def get_active_subscription(
        db: Client,
        user_id: str,
        subscription_type: SubscriptionType,
        now: datetime | None = None,
    ) -> Subscription | None:
        """Return the single current subscription for (user, type), if any.

        Rows still marked active but past ``expires_at`` are flipped to
        expired on the way through and not returned.
        """
        now = now or _now()

        def _query():
            return (
                db.table(SUBSCRIPTIONS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("subscription_type", subscription_type.value)
                .eq("status", SubscriptionStatus.active.value)
                .order("created_at", desc=True)
                .execute()
            )

        result = await asyncio.to_thread(_query)
        for row in result.data or []:
            sub = Subscription(**row)
            if sub.is_current(now):
                return sub
            await SubscriptionService._expire(db, sub, now)
        return None

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @staticmethod
    async def create_subscription(
        db: Client,
        gateway: RazorpayClient,
        user_id: str,
        subscription_type: SubscriptionType,
        plan_name: str,
        currency: str = "INR",
    ) -> tuple[Subscription, GatewayOrder]:
        """Open a gateway order and record a pending_payment subscription."""
        try:
            plan = get_plan_config(subscription_type, plan_name)
        except KeyError:
            choices = ", ".join(f"'{name}'" for name in plan_names(subscription_type))
            raise BadRequest(f"Invalid plan. Choose one of: {choices}")

        existing = await SubscriptionService.get_active_subscription(
            db, user_id, subscription_type
        )
        if existing is not None:
            raise BadRequest(
                f"You already have an active {subscription_type.value} subscription"
            )

        now = _now()
        order = await gateway.create_order(
            plan.amount_minor,
            currency=currency,
            receipt=f"{subscription_type.value}_{int(now.timestamp())}",
            notes={"user_id": user_id, "plan": plan.name},
        )

        row = {
            "user_id": user_id,
            "subscription_type": subscription_type.value,
            "plan_name": plan.name,
            "price": str(plan.price),
            "currency": currency,
            "status": SubscriptionStatus.pending_payment.value,
            "gateway_order_id": order.id,
            "payment_id": None,
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }

        def _insert():
            return db.table(SUBSCRIPTIONS_TABLE).insert(row).execute()

        result = await asyncio.to_thread(_insert)
        if not result.data:
            raise InternalError("Failed to create subscription")

        sub = Subscription(**result.data[0])
        logger.info(
            "Created %s/%s subscription %s for user %s (order %s)",
            subscription_type.value,
            plan.name,
            sub.id,
            user_id,
            order.id,
        )
        return sub, order

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    @staticmethod
    async def verify_payment(
        db: Client,
        gateway: RazorpayClient,
        user_id: str,
        subscription_type: SubscriptionType,
        subscription_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
        now: datetime | None = None,
    ) -> Subscription:
        """Confirm a checkout and activate the subscription.

        Raises:
            InvalidSignature: signature mismatch, or the order belongs to a
                different subscription. Nothing is written.
            NotFound: no subscription with this id, owner and type.
            BadRequest: not awaiting payment, or another subscription of
                this type became active first.
        """
        if not gateway.verify_signature(order_id, payment_id, signature):
            logger.warning("Invalid payment signature for subscription %s", subscription_id)
            raise InvalidSignature()

        sub = await SubscriptionService.get_owned_subscription(
            db, user_id, subscription_type, subscription_id
        )
        if sub.gateway_order_id != order_id:
            raise InvalidSignature("Payment does not belong to this subscription")

        if sub.status == SubscriptionStatus.active and sub.payment_id == payment_id:
            return sub
        if sub.status != SubscriptionStatus.pending_payment:
            raise BadRequest(f"Subscription is {sub.status.value}, not awaiting payment")

        plan = get_plan_config(subscription_type, sub.plan_name)
        now = now or _now()
        update = {
            "status": SubscriptionStatus.active.value,
            "payment_id": payment_id,
            "starts_at": now.isoformat(),
            "expires_at": (now + timedelta(days=plan.duration_days)).isoformat(),
            "updated_at": now.isoformat(),
        }

        def _activate():
            return (
                db.table(SUBSCRIPTIONS_TABLE)
                .update(update)
                .eq("id", sub.id)
                .eq("user_id", user_id)
                .eq("status", SubscriptionStatus.pending_payment.value)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_activate)
        except APIError as e:
            if is_unique_violation(e):
                raise BadRequest(
                    f"You already have an active {subscription_type.value} subscription"
                )
            raise

        if not result.data:
            # Lost the race; a concurrent verify with the same payment is fine
            current = await SubscriptionService.get_subscription(db, sub.id)
            if (
                current is not None
                and current.status == SubscriptionStatus.active
                and current.payment_id == payment_id
            ):
                return current
            raise BadRequest("Subscription is no longer awaiting payment")

        activated = Subscription(**result.data[0])
        await SubscriptionService._sync_profile_plan(
            db, user_id, subscription_type, activated.plan_name
        )
        logger.info(
            "Subscription %s activated for user %s until %s",
            activated.id,
            user_id,
            activated.expires_at,
        )
        return activated

    # ------------------------------------------------------------------
    # Cancel / Expire
    # ------------------------------------------------------------------

    @staticmethod
    async def cancel_subscription(
        db: Client,
        user_id: str,
        subscription_type: SubscriptionType,
        subscription_id: str,
    ) -> Subscription:
        """Cancel a pending or active subscription owned by the caller."""
        sub = await SubscriptionService.get_owned_subscription(
            db, user_id, subscription_type, subscription_id
        )
        if sub.status not in CANCELLABLE:
            raise BadRequest(f"Subscription is already {sub.status.value}")

        now = _now()
        update = {
            "status": SubscriptionStatus.cancelled.value,
            "cancelled_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }

        def _update():
            return (
                db.table(SUBSCRIPTIONS_TABLE)
                .update(update)
                .eq("id", sub.id)
                .eq("status", sub.status.value)
                .execute()
            )

        result = await asyncio.to_thread(_update)
        if not result.data:
            raise BadRequest("Subscription changed state, please retry")

        if sub.status == SubscriptionStatus.active:
            await SubscriptionService._sync_profile_plan(db, user_id, subscription_type, "none")
        logger.info("User %s cancelled subscription %s", user_id, sub.id)
        return Subscription(**result.data[0])

    @staticmethod
    async def _expire(db: Client, sub: Subscription, now: datetime) -> bool:
        """Flip one lapsed active row to expired. False if someone beat us to it."""

        def _update():
            return (
                db.table(SUBSCRIPTIONS_TABLE)
                .update({"status": SubscriptionStatus.expired.value, "updated_at": now.isoformat()})
                .eq("id", sub.id)
                .eq("status", SubscriptionStatus.active.value)
                .execute()
            )

        result = await asyncio.to_thread(_update)
        if not result.data:
            return False
        await SubscriptionService._sync_profile_plan(
            db, sub.user_id, sub.subscription_type, "none"
        )
        logger.warning("Subscription %s expired (expires_at %s)", sub.id, sub.expires_at)
        return True

    @staticmethod
    async def expire_overdue_subscriptions(
        db: Client,
        now: datetime | None = None,
        dry_run: bool = False,
        batch_size: int = 500,
    ) -> list[str]:
        """Sweep active subscriptions whose ``expires_at`` has passed.

        Returns the ids that were (or, with ``dry_run``, would be) expired.
        """
        now = now or _now()

        def _query():
            return (
                db.table(SUBSCRIPTIONS_TABLE)
                .select("*")
                .eq("status", SubscriptionStatus.active.value)
                .lte("expires_at", now.isoformat())
                .limit(batch_size)
                .execute()
            )

        result = await asyncio.to_thread(_query)
        overdue = [Subscription(**row) for row in result.data or []]
        if dry_run:
            return [sub.id for sub in overdue]

        expired = []
        for sub in overdue:
            if await SubscriptionService._expire(db, sub, now):
                expired.append(sub.id)
        return expired

    # ------------------------------------------------------------------
    # Profile sync
    # ------------------------------------------------------------------

    @staticmethod
    async def _sync_profile_plan(
        db: Client,
        user_id: str,
        subscription_type: SubscriptionType,
        plan_name: str,
    ) -> None:
        """Copy the plan tier onto the user's profile, if one exists."""
        table = PROFILE_TABLES[subscription_type]

        def _update():
            return (
                db.table(table)
                .update({"subscription_plan": plan_name, "updated_at": _now().isoformat()})
                .eq("user_id", user_id)
                .execute()
            )

        try:
            await asyncio.to_thread(_update)
        except APIError as e:
            # The subscription change already committed; ranking catches up on next update
            logger.error("Failed to sync %s plan for user %s: %s", table, user_id, e)
