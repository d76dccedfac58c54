# otpauth Services
from otpauth.services.authenticator import Authenticator, extract_token
from otpauth.services.cleanup import TokenCleanupService
from otpauth.services.errors import ErrorKind, Failure, Result
from otpauth.services.otp import OtpIssuer, OtpVerifier
from otpauth.services.rate_limiter import RateLimiter
from otpauth.services.token_codec import TokenCodec
from otpauth.services.tokens import RefreshCoordinator, SignoutService, TokenBlacklist, TokenIssuer

__all__ = [
    "Authenticator",
    "ErrorKind",
    "Failure",
    "OtpIssuer",
    "OtpVerifier",
    "RateLimiter",
    "RefreshCoordinator",
    "Result",
    "SignoutService",
    "TokenBlacklist",
    "TokenCleanupService",
    "TokenCodec",
    "TokenIssuer",
    "extract_token",
]
