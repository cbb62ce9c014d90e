"""Pytest configuration and fixtures."""

import os
import secrets
from unittest.mock import AsyncMock

import pytest

# Unique secrets per run so a leaked test token is worthless
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"
_TEST_JWT_REFRESH_SECRET = f"test-only-refresh-{secrets.token_urlsafe(32)}"
_TEST_RAZORPAY_SECRET = f"rzp-test-{secrets.token_urlsafe(16)}"

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ.setdefault("JWT_REFRESH_SECRET_KEY", _TEST_JWT_REFRESH_SECRET)
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", _TEST_RAZORPAY_SECRET)
os.environ.setdefault("ENVIRONMENT", "development")

from fakes import FakeSupabase  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from mento.auth import create_access_token, create_refresh_token  # noqa: E402
from mento.config import get_settings  # noqa: E402
from mento.database import USERS_TABLE, get_db  # noqa: E402
from mento.main import app  # noqa: E402
from mento.notifications import OtpVerificationError, get_email_service, get_otp_provider  # noqa: E402
from mento.payments import GatewayOrder, RazorpayClient, get_payment_gateway  # noqa: E402
from mento.rate_limit import limiter  # noqa: E402


class FakeOtpProvider:
    """Accepts one known code per mobile.

    With ``returns_code`` it behaves like the development provider and hands
    the code back for the route to mail.
    """

    def __init__(self, code: str = "123456", returns_code: bool = False):
        self.code = code
        self.returns_code = returns_code
        self.sent: list[str] = []

    async def send_otp(self, mobile: str) -> str | None:
        self.sent.append(mobile)
        return self.code if self.returns_code else None

    async def verify_otp(self, mobile: str, code: str) -> None:
        if code != self.code:
            raise OtpVerificationError()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def gateway(settings):
    """Razorpay client with a known secret and no network."""
    client = RazorpayClient(key_id=settings.razorpay_key_id, key_secret=settings.razorpay_key_secret)
    counter = {"n": 0}

    async def _create_order(amount_minor, currency="INR", receipt=None, notes=None):
        counter["n"] += 1
        return GatewayOrder(
            id=f"order_test_{counter['n']}",
            amount=amount_minor,
            currency=currency,
            receipt=receipt,
            status="created",
        )

    client.create_order = AsyncMock(side_effect=_create_order)
    return client


@pytest.fixture
def otp_provider():
    return FakeOtpProvider()


@pytest.fixture
def mailer():
    service = AsyncMock()
    service.send_welcome_email = AsyncMock(return_value=True)
    service.send_otp_email = AsyncMock(return_value=True)
    return service


@pytest.fixture(autouse=True)
def reset_limiter():
    """slowapi counters are in-memory and shared across tests."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def client(db, gateway, otp_provider, mailer):
    """Create a test client wired to the in-memory database."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_otp_provider] = lambda: otp_provider
    app.dependency_overrides[get_email_service] = lambda: mailer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# =============================================================================
# Users and tokens
# =============================================================================


@pytest.fixture
def make_user(db):
    """Seed a user row; returns the stored dict."""
    counter = {"n": 0}

    def _make(kyc_status: str = "pending", is_admin: bool = False, is_active: bool = True, **extra):
        counter["n"] += 1
        return db.seed(
            USERS_TABLE,
            mobile=extra.pop("mobile", f"98765{counter['n']:05d}"),
            kyc_status=kyc_status,
            is_admin=is_admin,
            is_active=is_active,
            **extra,
        )

    return _make


@pytest.fixture
def auth_headers_for(settings):
    """Build bearer headers for a seeded user."""

    def _headers(user: dict) -> dict:
        token = create_access_token(user["id"], user["mobile"], settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def auth_headers(user, auth_headers_for):
    return auth_headers_for(user)


@pytest.fixture
def admin_headers(make_user, auth_headers_for):
    return auth_headers_for(make_user(kyc_status="approved", is_admin=True))


@pytest.fixture
def refresh_token_for(settings):
    def _token(user: dict) -> str:
        return create_refresh_token(user["id"], user["mobile"], settings)

    return _token
