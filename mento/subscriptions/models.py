"""Pydantic models for Mento subscriptions.

Prices are Decimal rupees; the gateway is always sent integer paise.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================


class SubscriptionType(str, Enum):
    """Which kind of profile a subscription unlocks."""

    worker = "worker"
    job_seeker = "jobseeker"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states.

    pending_payment -> active -> expired | cancelled
    pending_payment -> cancelled
    """

    pending_payment = "pending_payment"
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class WorkerPlan(str, Enum):
    none = "none"
    silver = "silver"
    gold = "gold"


class JobSeekerPlan(str, Enum):
    none = "none"
    basic = "basic"
    premium = "premium"


# =============================================================================
# Plan Configuration
# =============================================================================

DEFAULT_DURATION_DAYS = 365


class PlanConfig(BaseModel):
    """Static configuration for a purchasable plan."""

    subscription_type: SubscriptionType
    name: str
    price: Decimal  # INR
    duration_days: int = DEFAULT_DURATION_DAYS
    tier_rank: int

    class Config:
        frozen = True

    @property
    def amount_minor(self) -> int:
        """Price in paise, the unit the payment gateway expects."""
        return int((self.price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# Canonical plan definitions, single source of truth
PLAN_CONFIGS: dict[SubscriptionType, dict[str, PlanConfig]] = {
    SubscriptionType.worker: {
        WorkerPlan.silver.value: PlanConfig(
            subscription_type=SubscriptionType.worker,
            name=WorkerPlan.silver.value,
            price=Decimal("1.00"),
            tier_rank=1,
        ),
        WorkerPlan.gold.value: PlanConfig(
            subscription_type=SubscriptionType.worker,
            name=WorkerPlan.gold.value,
            price=Decimal("2.00"),
            tier_rank=2,
        ),
    },
    SubscriptionType.job_seeker: {
        JobSeekerPlan.basic.value: PlanConfig(
            subscription_type=SubscriptionType.job_seeker,
            name=JobSeekerPlan.basic.value,
            price=Decimal("0.50"),
            tier_rank=1,
        ),
        JobSeekerPlan.premium.value: PlanConfig(
            subscription_type=SubscriptionType.job_seeker,
            name=JobSeekerPlan.premium.value,
            price=Decimal("1.50"),
            tier_rank=2,
        ),
    },
}


def get_plan_config(subscription_type: SubscriptionType, plan_name: str) -> PlanConfig:
    """Look up a plan. Raises KeyError for unknown plans."""
    return PLAN_CONFIGS[subscription_type][plan_name.lower()]


def plan_names(subscription_type: SubscriptionType) -> list[str]:
    return list(PLAN_CONFIGS[subscription_type])


def plan_tier_rank(plan_name: str | None) -> int:
    """Ranking weight for search ordering; unknown or ``none`` ranks lowest."""
    if not plan_name:
        return 0
    for plans in PLAN_CONFIGS.values():
        config = plans.get(plan_name)
        if config is not None:
            return config.tier_rank
    return 0


# =============================================================================
# Domain Models
# =============================================================================


class Subscription(BaseModel):
    """A user's subscription record (mirrors the subscriptions table)."""

    id: str
    user_id: str
    subscription_type: SubscriptionType
    plan_name: str
    price: Decimal
    currency: str = "INR"
    status: SubscriptionStatus = SubscriptionStatus.pending_payment
    gateway_order_id: str | None = None
    payment_id: str | None = None
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_current(self, now: datetime | None = None) -> bool:
        """Active and not yet past ``expires_at``."""
        if self.status != SubscriptionStatus.active:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.expires_at > now


# =============================================================================
# API Request / Response Models
# =============================================================================


class GatewayOrderInfo(BaseModel):
    """Order details the client needs to open the checkout."""

    order_id: str
    amount: int  # paise
    currency: str
    key_id: str | None = None


class CreateSubscriptionResponse(BaseModel):
    subscription: Subscription
    order: GatewayOrderInfo


class VerifyPaymentRequest(BaseModel):
    """Payload returned by the checkout after a successful payment."""

    subscription_id: str
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class SubscriptionStatusResponse(BaseModel):
    has_subscription: bool
    subscription: Subscription | None = None
