"""Configuration settings for the Mento backend."""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App
    app_name: str = "Mento Services"
    environment: str = "production"  # "development" enables the local OTP provider
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = False
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Supabase
    supabase_url: str
    supabase_secret_key: str  # Backend/admin access
    database_timeout_seconds: int = 10

    # JWT: access and refresh tokens are signed with different secrets
    jwt_secret_key: str  # Required - no default for security
    jwt_refresh_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_expire_minutes: int = 15
    jwt_refresh_expire_days: int = 7

    # Razorpay
    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    razorpay_api_url: str = "https://api.razorpay.com/v1"
    payment_currency: str = "INR"
    gateway_timeout_seconds: float = 10.0

    # MSG91
    msg91_auth_key: str | None = None
    msg91_template_id: str | None = None
    msg91_base_url: str = "https://control.msg91.com/api/v5/otp"
    sms_timeout_seconds: float = 10.0

    # SMTP
    mail_host: str | None = None
    mail_port: int = 587
    mail_username: str | None = None
    mail_password: str | None = None
    mail_from: str = "no-reply@mento.services"
    mail_use_tls: bool = True
    mail_timeout_seconds: float = 10.0

    # OTP and rate limits
    otp_length: int = 6
    otp_expire_minutes: int = 10
    otp_max_attempts: int = 5
    otp_send_limit: int = 3
    otp_verify_limit: int = 5
    otp_window_seconds: int = 600
    refresh_limit: int = 10
    refresh_window_seconds: int = 60

    # Search
    nearby_max_distance_m: float = 10_000.0
    nearby_max_page_size: int = 50

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    @model_validator(mode="after")
    def _check_token_settings(self) -> "Settings":
        if self.jwt_secret_key == self.jwt_refresh_secret_key:
            raise ValueError("JWT_REFRESH_SECRET_KEY must differ from JWT_SECRET_KEY")
        if self.jwt_refresh_expire_days * 24 * 60 <= self.jwt_access_expire_minutes:
            raise ValueError("Refresh tokens must outlive access tokens")
        return self

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def is_msg91_enabled(self) -> bool:
        return bool(self.msg91_auth_key and self.msg91_template_id)

    @property
    def is_razorpay_enabled(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def is_mail_enabled(self) -> bool:
        return bool(self.mail_host and self.mail_username and self.mail_password)

    @property
    def access_token_lifetime_seconds(self) -> int:
        return self.jwt_access_expire_minutes * 60

    @property
    def refresh_token_lifetime_seconds(self) -> int:
        return self.jwt_refresh_expire_days * 24 * 60 * 60


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
