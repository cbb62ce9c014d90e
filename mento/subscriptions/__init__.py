"""Paid subscriptions that unlock worker and job-seeker profiles."""

from .models import (
    PLAN_CONFIGS,
    CreateSubscriptionResponse,
    GatewayOrderInfo,
    JobSeekerPlan,
    PlanConfig,
    Subscription,
    SubscriptionStatus,
    SubscriptionStatusResponse,
    SubscriptionType,
    VerifyPaymentRequest,
    WorkerPlan,
    get_plan_config,
    plan_tier_rank,
)
from .service import SubscriptionService

__all__ = [
    # Enums
    "SubscriptionType",
    "SubscriptionStatus",
    "WorkerPlan",
    "JobSeekerPlan",
    # Config
    "PlanConfig",
    "PLAN_CONFIGS",
    "get_plan_config",
    "plan_tier_rank",
    # Models
    "Subscription",
    "GatewayOrderInfo",
    "CreateSubscriptionResponse",
    "VerifyPaymentRequest",
    "SubscriptionStatusResponse",
    # Service
    "SubscriptionService",
]
