# otpauth Models
from otpauth.models.base import BaseModel
from otpauth.models.otp_code import OtpCode
from otpauth.models.refresh_token import RefreshToken
from otpauth.models.token_blacklist import TokenBlacklist
from otpauth.models.user import User

__all__ = [
    "BaseModel",
    "OtpCode",
    "RefreshToken",
    "TokenBlacklist",
    "User",
]
