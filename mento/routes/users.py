"""User account routes."""

from fastapi import APIRouter

from ..auth import CurrentUser
from ..database import (
    JOB_SEEKER_PROFILES_TABLE,
    WORKER_PROFILES_TABLE,
    Database,
    deactivate_user,
    get_user,
    update_user,
    utc_now,
)
from ..errors import BadRequest, NotFound
from ..logging_config import get_logger, log_auth_event
from ..models import (
    ApiResponse,
    FcmTokenUpdate,
    UserOut,
    UserProfileResponse,
    UserUpdate,
    ok,
)
from ..subscriptions import SubscriptionService, SubscriptionType

logger = get_logger("mento.users")
router = APIRouter(prefix="/users", tags=["users"])


async def _require_user(db, user_id: str) -> dict:
    user = await get_user(db, user_id)
    if not user or not user.get("is_active", True):
        raise NotFound("User not found")
    return user


@router.get("/me", response_model=ApiResponse[UserProfileResponse])
async def get_profile(auth: CurrentUser, db: Database):
    """Get the user with active subscriptions and worker profile, if any."""
    user = await _require_user(db, auth.user_id)

    worker_sub = await SubscriptionService.get_active_subscription(
        db, auth.user_id, SubscriptionType.worker
    )
    seeker_sub = await SubscriptionService.get_active_subscription(
        db, auth.user_id, SubscriptionType.job_seeker
    )
    result = (
        db.table(WORKER_PROFILES_TABLE).select("*").eq("user_id", auth.user_id).limit(1).execute()
    )

    return ok(
        UserProfileResponse(
            user=UserOut.model_validate(user),
            worker_subscription=worker_sub.model_dump(mode="json") if worker_sub else None,
            job_seeker_subscription=seeker_sub.model_dump(mode="json") if seeker_sub else None,
            worker_profile=result.data[0] if result.data else None,
        )
    )


@router.put("/me", response_model=ApiResponse[UserOut])
async def update_profile(body: UserUpdate, auth: CurrentUser, db: Database):
    """Update name, contact and address details."""
    await _require_user(db, auth.user_id)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise BadRequest("No fields to update")

    user = await update_user(db, auth.user_id, updates)
    if not user:
        raise NotFound("User not found")
    logger.info(f"PUT /users/me | user={auth.user_id} | fields={sorted(updates)}")
    return ok(UserOut.model_validate(user), message="Profile updated successfully")


@router.put("/me/fcm-token", response_model=ApiResponse[None])
async def update_fcm_token(body: FcmTokenUpdate, auth: CurrentUser, db: Database):
    """Register the device token used for push notifications."""
    await _require_user(db, auth.user_id)
    await update_user(
        db,
        auth.user_id,
        {"fcm_token": body.fcm_token, "fcm_platform": body.platform.value},
    )
    return ok(message="FCM token updated successfully")


@router.delete("/me", response_model=ApiResponse[None])
async def delete_account(auth: CurrentUser, db: Database):
    """Deactivate the account. Profiles are hidden, data is kept."""
    await _require_user(db, auth.user_id)
    await deactivate_user(db, auth.user_id)

    now = utc_now().isoformat()
    db.table(WORKER_PROFILES_TABLE).update({"is_available": False, "updated_at": now}).eq(
        "user_id", auth.user_id
    ).execute()
    db.table(JOB_SEEKER_PROFILES_TABLE).update({"is_active": False, "updated_at": now}).eq(
        "user_id", auth.user_id
    ).execute()

    log_auth_event("deactivate", auth.user_id, True)
    return ok(message="Account deactivated successfully")
