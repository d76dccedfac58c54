# otpauth API schemas
from otpauth.schemas.auth import (
    ErrorResponse,
    RefreshData,
    RefreshRequest,
    SignoutData,
    SuccessResponse,
    UserResponse,
)
from otpauth.schemas.otp import (
    SendOtpData,
    SendOtpRequest,
    UserSummary,
    VerifyOtpData,
    VerifyOtpRequest,
)

__all__ = [
    "ErrorResponse",
    "RefreshData",
    "RefreshRequest",
    "SendOtpData",
    "SendOtpRequest",
    "SignoutData",
    "SuccessResponse",
    "UserResponse",
    "UserSummary",
    "VerifyOtpData",
    "VerifyOtpRequest",
]
