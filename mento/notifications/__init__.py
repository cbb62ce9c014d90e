"""SMS and email delivery."""

from .email import EmailService, Mailer, get_email_service
from .sms import (
    DevelopmentOtpProvider,
    Msg91OtpProvider,
    OtpProvider,
    OtpProviderError,
    OtpSender,
    OtpVerificationError,
    get_otp_provider,
)

__all__ = [
    "EmailService",
    "Mailer",
    "get_email_service",
    "OtpProvider",
    "Msg91OtpProvider",
    "DevelopmentOtpProvider",
    "OtpProviderError",
    "OtpVerificationError",
    "OtpSender",
    "get_otp_provider",
]
