"""Mobile OTP authentication routes."""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from postgrest.exceptions import APIError
from supabase import Client

from ..auth import CurrentUser, create_access_token, create_refresh_token, refresh_access_token
from ..config import Settings, get_settings
from ..database import (
    OTP_REQUESTS_TABLE,
    Database,
    create_user,
    get_user,
    get_user_by_mobile,
    is_unique_violation,
    update_user,
    utc_now,
)
from ..errors import Forbidden, InternalError, NotFound
from ..logging_config import get_logger, log_auth_event, mask_mobile
from ..models import (
    AccessTokenResponse,
    ApiResponse,
    AuthResponse,
    RefreshTokenRequest,
    SendOtpRequest,
    UserOut,
    VerifyOtpRequest,
    ok,
)
from ..notifications import Mailer, OtpSender, OtpVerificationError
from ..rate_limit import KeyRateLimiter, get_client_ip, limiter

logger = get_logger("mento.auth")
router = APIRouter(prefix="/auth", tags=["auth"])

AppSettings = Annotated[Settings, Depends(get_settings)]


# =============================================================================
# OTP request bookkeeping
# =============================================================================


async def record_otp_request(db: Client, mobile: str, email: str | None) -> None:
    """Remember the email given with an OTP request, for the welcome mail."""
    data = {"mobile": mobile, "email": email, "created_at": utc_now().isoformat()}
    db.table(OTP_REQUESTS_TABLE).upsert(data, on_conflict="mobile").execute()


async def pop_otp_request_email(db: Client, mobile: str) -> str | None:
    result = db.table(OTP_REQUESTS_TABLE).select("email").eq("mobile", mobile).limit(1).execute()
    db.table(OTP_REQUESTS_TABLE).delete().eq("mobile", mobile).execute()
    return result.data[0].get("email") if result.data else None


def _otp_window(settings: Settings) -> timedelta:
    return timedelta(seconds=settings.otp_window_seconds)


# =============================================================================
# Routes
# =============================================================================


async def _send(
    key_prefix: str,
    body: SendOtpRequest,
    background_tasks: BackgroundTasks,
    db: Client,
    settings: Settings,
    rate: KeyRateLimiter,
    provider: OtpSender,
    mailer: Mailer,
) -> ApiResponse:
    await rate.enforce(f"{key_prefix}:{body.mobile}", settings.otp_send_limit, _otp_window(settings))
    await record_otp_request(db, body.mobile, body.email)
    code = await provider.send_otp(body.mobile)
    if code and body.email:
        background_tasks.add_task(mailer.send_otp_email, body.email, code)
    log_auth_event(key_prefix, mask_mobile(body.mobile), True)
    return ok(message="OTP sent successfully")


@router.post("/send-otp", response_model=ApiResponse[None])
@limiter.limit("20/minute")
async def send_otp(
    request: Request,
    body: SendOtpRequest,
    background_tasks: BackgroundTasks,
    db: Database,
    settings: AppSettings,
    rate: KeyRateLimiter,
    provider: OtpSender,
    mailer: Mailer,
):
    """Send a login OTP to a mobile number (3 per 10 minutes per number)."""
    return await _send("send_otp", body, background_tasks, db, settings, rate, provider, mailer)


@router.post("/resend-otp", response_model=ApiResponse[None])
@limiter.limit("20/minute")
async def resend_otp(
    request: Request,
    body: SendOtpRequest,
    background_tasks: BackgroundTasks,
    db: Database,
    settings: AppSettings,
    rate: KeyRateLimiter,
    provider: OtpSender,
    mailer: Mailer,
):
    """Resend the login OTP; counted separately from the first send."""
    return await _send("resend_otp", body, background_tasks, db, settings, rate, provider, mailer)


@router.post("/verify-otp", response_model=ApiResponse[AuthResponse])
@limiter.limit("30/minute")
async def verify_otp(
    request: Request,
    body: VerifyOtpRequest,
    background_tasks: BackgroundTasks,
    db: Database,
    settings: AppSettings,
    rate: KeyRateLimiter,
    provider: OtpSender,
    mailer: Mailer,
):
    """
    Verify an OTP and sign the user in.

    The first successful verification for a mobile number creates the user.
    Returns an access/refresh token pair.
    """
    masked = mask_mobile(body.mobile)
    await rate.enforce(f"verify_otp:{body.mobile}", settings.otp_verify_limit, _otp_window(settings))

    try:
        await provider.verify_otp(body.mobile, body.otp)
    except OtpVerificationError as e:
        log_auth_event("verify_otp", masked, False, e.message)
        raise

    user = await get_user_by_mobile(db, body.mobile)
    is_new_user = user is None
    if is_new_user:
        email = await pop_otp_request_email(db, body.mobile)
        try:
            user = await create_user(db, body.mobile, email)
        except APIError as e:
            if not is_unique_violation(e):
                raise
            # Concurrent first login for the same number
            user = await get_user_by_mobile(db, body.mobile)
            is_new_user = False
        if not user:
            log_auth_event("register", masked, False, "database error")
            raise InternalError("Failed to create user")
        log_auth_event("register", user["id"], True)
        if is_new_user and email:
            background_tasks.add_task(mailer.send_welcome_email, email)
    else:
        if not user.get("is_active", True):
            log_auth_event("login", user["id"], False, "deactivated")
            raise Forbidden("Account is deactivated")
        user = await update_user(db, user["id"], {"last_login_at": utc_now().isoformat()}) or user
        log_auth_event("login", user["id"], True)

    access_token = create_access_token(user["id"], user["mobile"], settings)
    refresh_token = create_refresh_token(user["id"], user["mobile"], settings)
    return ok(
        AuthResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.access_token_lifetime_seconds,
            is_new_user=is_new_user,
            user=UserOut.model_validate(user),
        ),
        message="Registration successful" if is_new_user else "Login successful",
    )


@router.post("/refresh", response_model=ApiResponse[AccessTokenResponse])
@limiter.limit("30/minute")
async def refresh_token(
    request: Request,
    body: RefreshTokenRequest,
    settings: AppSettings,
    rate: KeyRateLimiter,
):
    """Exchange a refresh token for a new access token."""
    await rate.enforce(
        f"refresh:{get_client_ip(request)}",
        settings.refresh_limit,
        timedelta(seconds=settings.refresh_window_seconds),
    )
    access_token = refresh_access_token(body.refresh_token, settings)
    return ok(
        AccessTokenResponse(
            access_token=access_token,
            expires_in=settings.access_token_lifetime_seconds,
        ),
        message="Token refreshed",
    )


@router.get("/me", response_model=ApiResponse[UserOut])
async def me(auth: CurrentUser, db: Database):
    """Get the signed-in user."""
    user = await get_user(db, auth.user_id)
    if not user:
        raise NotFound("User not found")
    return ok(UserOut.model_validate(user))
