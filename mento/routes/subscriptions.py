"""Subscription purchase and status routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from ..auth import CurrentUser
from ..config import Settings, get_settings
from ..database import Database, ensure_uuid
from ..logging_config import get_logger
from ..models import ApiResponse, ok
from ..payments import PaymentGateway
from ..rate_limit import limiter
from ..subscriptions import (
    CreateSubscriptionResponse,
    GatewayOrderInfo,
    Subscription,
    SubscriptionService,
    SubscriptionStatusResponse,
    SubscriptionType,
    VerifyPaymentRequest,
)

logger = get_logger("mento.subscriptions")
router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post(
    "/{subscription_type}/create/{plan_name}",
    response_model=ApiResponse[CreateSubscriptionResponse],
)
@limiter.limit("10/minute")
async def create_subscription(
    request: Request,
    subscription_type: SubscriptionType,
    plan_name: str,
    auth: CurrentUser,
    db: Database,
    gateway: PaymentGateway,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """
    Start a plan purchase.

    Creates a gateway order and a subscription awaiting payment. The client
    opens checkout with the returned order and then calls ``/verify``.
    """
    logger.info(f"POST /subscriptions/{subscription_type.value}/create/{plan_name} | user={auth.user_id}")
    sub, order = await SubscriptionService.create_subscription(
        db,
        gateway,
        auth.user_id,
        subscription_type,
        plan_name,
        currency=settings.payment_currency,
    )
    return ok(
        CreateSubscriptionResponse(
            subscription=sub,
            order=GatewayOrderInfo(
                order_id=order.id,
                amount=order.amount,
                currency=order.currency,
                key_id=gateway.key_id,
            ),
        ),
        message="Order created. Complete the payment to activate your subscription.",
    )


@router.post("/{subscription_type}/verify", response_model=ApiResponse[Subscription])
@limiter.limit("20/minute")
async def verify_payment(
    request: Request,
    subscription_type: SubscriptionType,
    body: VerifyPaymentRequest,
    auth: CurrentUser,
    db: Database,
    gateway: PaymentGateway,
):
    """Verify the checkout signature and activate the subscription."""
    sub = await SubscriptionService.verify_payment(
        db,
        gateway,
        auth.user_id,
        subscription_type,
        ensure_uuid(body.subscription_id, "subscription id"),
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
    )
    return ok(sub, message="Payment verified. Subscription activated.")


@router.get("/{subscription_type}/status", response_model=ApiResponse[SubscriptionStatusResponse])
async def subscription_status(
    subscription_type: SubscriptionType,
    auth: CurrentUser,
    db: Database,
):
    """The caller's active subscription of this type, if any."""
    sub = await SubscriptionService.get_active_subscription(db, auth.user_id, subscription_type)
    return ok(SubscriptionStatusResponse(has_subscription=sub is not None, subscription=sub))


@router.post(
    "/{subscription_type}/{subscription_id}/cancel",
    response_model=ApiResponse[Subscription],
)
async def cancel_subscription(
    subscription_type: SubscriptionType,
    subscription_id: str,
    auth: CurrentUser,
    db: Database,
):
    """Cancel a pending or active subscription."""
    sub = await SubscriptionService.cancel_subscription(
        db,
        auth.user_id,
        subscription_type,
        ensure_uuid(subscription_id, "subscription id"),
    )
    return ok(sub, message="Subscription cancelled")
