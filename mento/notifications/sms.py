"""One-time password delivery and verification.

Production uses MSG91, which both generates and checks the code. In
development, when MSG91 credentials are absent, a local provider keeps a
bcrypt hash of the code in ``otp_codes``, logs the plaintext and returns it
so the route can mail it in the background.
"""

import secrets
from datetime import datetime, timedelta
from typing import Annotated, Protocol

import bcrypt
import httpx
from fastapi import Depends
from supabase import Client

from ..config import Settings, get_settings
from ..database import OTP_CODES_TABLE, Database, parse_timestamp, utc_now
from ..errors import InternalError, Unauthenticated
from ..logging_config import get_logger, mask_mobile

logger = get_logger("mento.sms")

# India country code; mobiles are stored without it
COUNTRY_CODE = "91"


class OtpProviderError(InternalError):
    """The provider could not send an OTP."""

    default_message = "Failed to send OTP"


class OtpVerificationError(Unauthenticated):
    """The provider rejected the code."""

    default_message = "Invalid OTP"


class OtpProvider(Protocol):
    async def send_otp(self, mobile: str) -> str | None:
        """Deliver a code. Returns it when the caller must forward it itself."""
        ...

    async def verify_otp(self, mobile: str, code: str) -> None: ...


# =============================================================================
# MSG91
# =============================================================================


class Msg91OtpProvider:
    """MSG91 v5 OTP API."""

    def __init__(self, auth_key: str, template_id: str, base_url: str, timeout: float = 10.0):
        self.auth_key = auth_key
        self.template_id = template_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _post(self, url: str, params: dict) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, params=params, headers={"authkey": self.auth_key})

    async def send_otp(self, mobile: str) -> None:
        params = {"template_id": self.template_id, "mobile": f"{COUNTRY_CODE}{mobile}"}
        try:
            response = await self._post(self.base_url, params)
        except httpx.HTTPError as e:
            logger.error(f"MSG91 send failed for {mask_mobile(mobile)}: {e}")
            raise OtpProviderError()

        body = _json_or_empty(response)
        if response.status_code >= 400 or body.get("type") == "error":
            logger.error(
                f"MSG91 send rejected for {mask_mobile(mobile)}: "
                f"status={response.status_code} message={body.get('message')}"
            )
            raise OtpProviderError()

    async def verify_otp(self, mobile: str, code: str) -> None:
        params = {"mobile": f"{COUNTRY_CODE}{mobile}", "otp": code}
        try:
            response = await self._post(f"{self.base_url}/verify", params)
        except httpx.HTTPError as e:
            logger.error(f"MSG91 verify failed for {mask_mobile(mobile)}: {e}")
            raise OtpProviderError("OTP verification is temporarily unavailable")

        body = _json_or_empty(response)
        if response.status_code >= 400 or body.get("type") != "success":
            raise OtpVerificationError(body.get("message") or "Invalid OTP")


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# =============================================================================
# Development provider
# =============================================================================


def generate_otp(length: int = 6) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class DevelopmentOtpProvider:
    """Local OTP store for development environments without SMS credentials."""

    def __init__(
        self,
        db: Client,
        settings: Settings,
        clock=utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock

    async def send_otp(self, mobile: str) -> str:
        code = generate_otp(self.settings.otp_length)
        now: datetime = self.clock()
        row = {
            "mobile": mobile,
            "code_hash": bcrypt.hashpw(code.encode(), bcrypt.gensalt()).decode(),
            "expires_at": (now + timedelta(minutes=self.settings.otp_expire_minutes)).isoformat(),
            "attempts": 0,
            "created_at": now.isoformat(),
        }
        self.db.table(OTP_CODES_TABLE).upsert(row, on_conflict="mobile").execute()
        logger.info(f"Development OTP for {mask_mobile(mobile)}: {code}")
        return code

    async def verify_otp(self, mobile: str, code: str) -> None:
        result = self.db.table(OTP_CODES_TABLE).select("*").eq("mobile", mobile).limit(1).execute()
        if not result.data:
            raise OtpVerificationError("OTP not found or expired")
        row = result.data[0]

        expires_at = parse_timestamp(row.get("expires_at"))
        if expires_at is None or self.clock() >= expires_at:
            self.db.table(OTP_CODES_TABLE).delete().eq("mobile", mobile).execute()
            raise OtpVerificationError("OTP expired")

        attempts = int(row.get("attempts") or 0)
        if attempts >= self.settings.otp_max_attempts:
            raise OtpVerificationError("Too many attempts. Request a new OTP.")

        if not bcrypt.checkpw(code.encode(), row["code_hash"].encode()):
            self.db.table(OTP_CODES_TABLE).update({"attempts": attempts + 1}).eq(
                "mobile", mobile
            ).execute()
            raise OtpVerificationError()

        self.db.table(OTP_CODES_TABLE).delete().eq("mobile", mobile).execute()


def get_otp_provider(
    settings: Annotated[Settings, Depends(get_settings)],
    db: Database,
) -> OtpProvider:
    """FastAPI dependency choosing the OTP provider for this environment."""
    if settings.is_msg91_enabled:
        return Msg91OtpProvider(
            auth_key=settings.msg91_auth_key,
            template_id=settings.msg91_template_id,
            base_url=settings.msg91_base_url,
            timeout=settings.sms_timeout_seconds,
        )
    if settings.is_development:
        return DevelopmentOtpProvider(db, settings)
    raise InternalError("SMS provider is not configured")


OtpSender = Annotated[OtpProvider, Depends(get_otp_provider)]
