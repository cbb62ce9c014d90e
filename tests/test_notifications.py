"""Tests for OTP providers, email delivery and the Razorpay client."""

import smtplib
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from mento.config import Settings
from mento.database import OTP_CODES_TABLE
from mento.errors import InternalError
from mento.notifications import (
    DevelopmentOtpProvider,
    EmailService,
    Msg91OtpProvider,
    OtpProviderError,
    OtpVerificationError,
    get_otp_provider,
)
from mento.notifications.sms import generate_otp
from mento.payments import GatewayError, RazorpayClient


def _settings(**overrides) -> Settings:
    values = {
        "supabase_url": "https://test.supabase.co",
        "supabase_secret_key": "k",
        "jwt_secret_key": "access-secret",
        "jwt_refresh_secret_key": "refresh-secret",
    }
    values.update(overrides)
    return Settings(**values)


class Clock:
    def __init__(self):
        self.now = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def dev_provider(db):
    clock = Clock()
    provider = DevelopmentOtpProvider(db, _settings(environment="development"), clock=clock)
    return provider, clock


async def _send_and_capture(provider, mobile="9876543210") -> str:
    with patch("mento.notifications.sms.generate_otp", return_value="424242"):
        return await provider.send_otp(mobile)


class TestDevelopmentOtpProvider:
    def test_generate_otp_shape(self):
        code = generate_otp(6)
        assert len(code) == 6 and code.isdigit()

    @pytest.mark.asyncio
    async def test_stores_hash_and_returns_code(self, db, dev_provider):
        provider, _ = dev_provider
        code = await _send_and_capture(provider)

        row = db.find(OTP_CODES_TABLE, mobile="9876543210")
        assert code == "424242"
        assert row["code_hash"] != code

    @pytest.mark.asyncio
    async def test_verify_consumes_code(self, db, dev_provider):
        provider, _ = dev_provider
        code = await _send_and_capture(provider)

        await provider.verify_otp("9876543210", code)

        assert db.find(OTP_CODES_TABLE, mobile="9876543210") is None
        with pytest.raises(OtpVerificationError):
            await provider.verify_otp("9876543210", code)

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempts(self, db, dev_provider):
        provider, _ = dev_provider
        code = await _send_and_capture(provider)

        for _ in range(5):
            with pytest.raises(OtpVerificationError):
                await provider.verify_otp("9876543210", "000000")

        with pytest.raises(OtpVerificationError, match="Too many attempts"):
            await provider.verify_otp("9876543210", code)

    @pytest.mark.asyncio
    async def test_expired_code(self, db, dev_provider):
        provider, clock = dev_provider
        code = await _send_and_capture(provider)
        clock.now += timedelta(minutes=10)

        with pytest.raises(OtpVerificationError, match="expired"):
            await provider.verify_otp("9876543210", code)

    @pytest.mark.asyncio
    async def test_resend_replaces_code(self, db, dev_provider):
        provider, _ = dev_provider
        await _send_and_capture(provider)
        with patch("mento.notifications.sms.generate_otp", return_value="111111"):
            await provider.send_otp("9876543210")

        assert len(db.rows(OTP_CODES_TABLE)) == 1
        with pytest.raises(OtpVerificationError):
            await provider.verify_otp("9876543210", "424242")
        await provider.verify_otp("9876543210", "111111")


class TestMsg91OtpProvider:
    def _provider(self):
        return Msg91OtpProvider("auth", "tmpl", "https://control.msg91.com/api/v5/otp")

    @pytest.mark.asyncio
    async def test_send_prefixes_country_code(self):
        provider = self._provider()
        provider._post = AsyncMock(return_value=httpx.Response(200, json={"type": "success"}))

        assert await provider.send_otp("9876543210") is None

        url, params = provider._post.await_args.args
        assert url == "https://control.msg91.com/api/v5/otp"
        assert params == {"template_id": "tmpl", "mobile": "919876543210"}

    @pytest.mark.asyncio
    async def test_send_error_response(self):
        provider = self._provider()
        provider._post = AsyncMock(
            return_value=httpx.Response(200, json={"type": "error", "message": "bad template"})
        )
        with pytest.raises(OtpProviderError):
            await provider.send_otp("9876543210")

    @pytest.mark.asyncio
    async def test_send_network_failure(self):
        provider = self._provider()
        provider._post = AsyncMock(side_effect=httpx.ConnectError("down"))
        with pytest.raises(OtpProviderError):
            await provider.send_otp("9876543210")

    @pytest.mark.asyncio
    async def test_verify(self):
        provider = self._provider()
        provider._post = AsyncMock(return_value=httpx.Response(200, json={"type": "success"}))
        await provider.verify_otp("9876543210", "123456")
        assert provider._post.await_args.args[0].endswith("/verify")

    @pytest.mark.asyncio
    async def test_verify_rejected(self):
        provider = self._provider()
        provider._post = AsyncMock(
            return_value=httpx.Response(200, json={"type": "error", "message": "OTP not match"})
        )
        with pytest.raises(OtpVerificationError, match="OTP not match"):
            await provider.verify_otp("9876543210", "123456")


class TestProviderSelection:
    def test_msg91_when_configured(self, db):
        settings = _settings(msg91_auth_key="a", msg91_template_id="t")
        assert isinstance(get_otp_provider(settings, db), Msg91OtpProvider)

    def test_development_fallback(self, db):
        settings = _settings(environment="development")
        assert isinstance(get_otp_provider(settings, db), DevelopmentOtpProvider)

    def test_production_without_credentials(self, db):
        with pytest.raises(InternalError):
            get_otp_provider(_settings(environment="production"), db)


class TestEmailService:
    @pytest.mark.asyncio
    async def test_skips_when_not_configured(self):
        service = EmailService(_settings())
        assert await service.send("a@example.com", "Hi", "body") is False

    @pytest.mark.asyncio
    async def test_sends_over_smtp(self):
        service = EmailService(
            _settings(mail_host="smtp.example.com", mail_username="u", mail_password="p")
        )
        with patch("mento.notifications.email.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            assert await service.send_otp_email("a@example.com", "123456") is True

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("u", "p")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "a@example.com"

    @pytest.mark.asyncio
    async def test_smtp_failure_is_swallowed(self):
        service = EmailService(
            _settings(mail_host="smtp.example.com", mail_username="u", mail_password="p")
        )
        with patch(
            "mento.notifications.email.smtplib.SMTP",
            side_effect=smtplib.SMTPConnectError(421, "busy"),
        ):
            assert await service.send_welcome_email("a@example.com", "Asha") is False


class TestRazorpayClient:
    def _patch_transport(self, monkeypatch, handler):
        transport = httpx.MockTransport(handler)
        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            "mento.payments.razorpay.httpx.AsyncClient",
            lambda **kwargs: real_client(transport=transport, **kwargs),
        )

    @pytest.mark.asyncio
    async def test_create_order(self, monkeypatch):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = request.read()
            return httpx.Response(200, json={"id": "order_abc", "amount": 100, "currency": "INR"})

        self._patch_transport(monkeypatch, handler)
        client = RazorpayClient("key", "secret", base_url="https://api.razorpay.com/v1")

        order = await client.create_order(100, receipt="worker_1")

        assert order.id == "order_abc"
        assert seen["url"] == "https://api.razorpay.com/v1/orders"
        assert seen["auth"].startswith("Basic ")
        assert b'"payment_capture":1' in seen["body"].replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_gateway_rejection(self, monkeypatch):
        self._patch_transport(monkeypatch, lambda request: httpx.Response(400, json={"error": {}}))
        with pytest.raises(GatewayError):
            await RazorpayClient("key", "secret").create_order(100)

    @pytest.mark.asyncio
    async def test_non_positive_amount(self):
        with pytest.raises(GatewayError):
            await RazorpayClient("key", "secret").create_order(0)
