"""Authentication and access gates for the Mento backend.

Tokens are HS256 JWTs. Access and refresh tokens use different secrets, so
one kind can never be verified as the other.

Protected routes declare the capabilities they need as dependencies:

    CurrentUser              -> AuthClaim          (valid access token)
    KycUser                  -> KycClaim           (+ KYC approved or submitted)
    require_subscription(t)  -> SubscriptionClaim  (+ active subscription of type t)
    AdminUser                -> AuthClaim          (+ users.is_admin)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from supabase import Client

from .config import Settings, get_settings
from .database import Database, get_user
from .errors import Forbidden, SubscriptionRequired, Unauthenticated
from .logging_config import get_logger
from .subscriptions.models import Subscription, SubscriptionType
from .subscriptions.service import SubscriptionService

logger = get_logger("mento.auth")

# Bearer token scheme; missing headers are reported as Unauthenticated below
security = HTTPBearer(auto_error=False)


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


class KycStatus(str, Enum):
    pending = "pending"
    submitted = "submitted"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"


# Provisional access is granted while a submission awaits review
KYC_ALLOWED_STATUSES = frozenset({KycStatus.approved, KycStatus.submitted})


class InvalidToken(Unauthenticated):
    default_message = "Invalid or expired token"


# =============================================================================
# Claims
# =============================================================================


@dataclass(frozen=True)
class AuthClaim:
    """Identity proven by a valid access token."""

    user_id: str
    mobile: str


@dataclass(frozen=True)
class KycClaim:
    """An authenticated user whose KYC status permits gated operations."""

    auth: AuthClaim
    kyc_status: KycStatus

    @property
    def user_id(self) -> str:
        return self.auth.user_id


@dataclass(frozen=True)
class SubscriptionClaim:
    """A KYC-cleared user holding an active subscription of one type."""

    kyc: KycClaim
    subscription: Subscription

    @property
    def user_id(self) -> str:
        return self.kyc.auth.user_id


# =============================================================================
# Token Issuer
# =============================================================================


def _secret_for(kind: TokenKind, settings: Settings) -> str:
    if kind == TokenKind.refresh:
        return settings.jwt_refresh_secret_key
    return settings.jwt_secret_key


def _lifetime_for(kind: TokenKind, settings: Settings) -> timedelta:
    if kind == TokenKind.refresh:
        return timedelta(days=settings.jwt_refresh_expire_days)
    return timedelta(minutes=settings.jwt_access_expire_minutes)


def create_token(
    user_id: str,
    mobile: str,
    kind: TokenKind,
    settings: Settings,
    now: datetime | None = None,
) -> str:
    """Create a signed token of the given kind."""
    issued = now or datetime.now(timezone.utc)
    to_encode = {
        "sub": user_id,
        "mobile": mobile,
        "type": kind.value,
        "iat": issued,
        "exp": issued + _lifetime_for(kind, settings),
    }
    return jwt.encode(to_encode, _secret_for(kind, settings), algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, mobile: str, settings: Settings) -> str:
    return create_token(user_id, mobile, TokenKind.access, settings)


def create_refresh_token(user_id: str, mobile: str, settings: Settings) -> str:
    return create_token(user_id, mobile, TokenKind.refresh, settings)


def verify_token(token: str, kind: TokenKind, settings: Settings) -> AuthClaim:
    """Decode a token, accepting only the secret and ``type`` of ``kind``."""
    try:
        payload = jwt.decode(
            token,
            _secret_for(kind, settings),
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise InvalidToken()

    if payload.get("type") != kind.value:
        raise InvalidToken("Invalid token type")

    user_id = payload.get("sub")
    mobile = payload.get("mobile")
    if not isinstance(user_id, str) or not user_id or not isinstance(mobile, str) or not mobile:
        raise InvalidToken("Malformed token payload")
    return AuthClaim(user_id=user_id, mobile=mobile)


def refresh_access_token(refresh_token: str, settings: Settings) -> str:
    """Issue a new access token from a valid refresh token.

    The refresh token itself is not rotated or revoked.
    """
    claim = verify_token(refresh_token, TokenKind.refresh, settings)
    return create_access_token(claim.user_id, claim.mobile, settings)


# =============================================================================
# Gates
# =============================================================================


def authenticate(token: str | None, settings: Settings) -> AuthClaim:
    """Authenticated gate: a bearer access token must be present and valid."""
    if not token:
        raise Unauthenticated("Missing or malformed Authorization header")
    return verify_token(token, TokenKind.access, settings)


async def check_kyc(db: Client, claim: AuthClaim) -> KycClaim:
    """KYC gate: approved or submitted passes, everything else is refused.

    Storage failures also refuse.
    """
    try:
        user = await get_user(db, claim.user_id)
    except Exception as e:
        logger.error(f"KYC gate lookup failed for {claim.user_id}: {e}")
        raise Forbidden("Unable to verify KYC status")

    if not user or not user.get("is_active", True):
        raise Forbidden("User not found")

    try:
        status = KycStatus(user.get("kyc_status") or KycStatus.pending.value)
    except ValueError:
        raise Forbidden("KYC verification required")

    if status not in KYC_ALLOWED_STATUSES:
        raise Forbidden("KYC verification required. Please complete your KYC first.")
    return KycClaim(auth=claim, kyc_status=status)


async def check_subscription(
    db: Client,
    claim: KycClaim,
    subscription_type: SubscriptionType,
) -> SubscriptionClaim:
    """Subscribed gate: an active, unexpired subscription of the given type."""
    subscription = await SubscriptionService.get_active_subscription(
        db, claim.user_id, subscription_type
    )
    if subscription is None:
        raise SubscriptionRequired(
            f"An active {subscription_type.value} subscription is required"
        )
    return SubscriptionClaim(kyc=claim, subscription=subscription)


async def get_current_user(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> AuthClaim:
    """FastAPI dependency for the authenticated gate."""
    token = credentials.credentials if credentials else None
    return authenticate(token, settings)


CurrentUser = Annotated[AuthClaim, Depends(get_current_user)]


async def require_kyc(claim: CurrentUser, db: Database) -> KycClaim:
    """FastAPI dependency for the KYC gate."""
    return await check_kyc(db, claim)


KycUser = Annotated[KycClaim, Depends(require_kyc)]


def require_subscription(subscription_type: SubscriptionType):
    """Build a dependency that requires KYC plus an active subscription."""

    async def _dependency(claim: KycUser, db: Database) -> SubscriptionClaim:
        return await check_subscription(db, claim, subscription_type)

    return _dependency


WorkerSubscriber = Annotated[
    SubscriptionClaim, Depends(require_subscription(SubscriptionType.worker))
]
JobSeekerSubscriber = Annotated[
    SubscriptionClaim, Depends(require_subscription(SubscriptionType.job_seeker))
]


async def require_admin(claim: CurrentUser, db: Database) -> AuthClaim:
    """FastAPI dependency for admin-only routes."""
    user = await get_user(db, claim.user_id)
    if not user or not user.get("is_active", True) or not user.get("is_admin"):
        raise Forbidden("Admin access required")
    return claim


AdminUser = Annotated[AuthClaim, Depends(require_admin)]
