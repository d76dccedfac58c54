"""Auth cookie helpers."""

from fastapi import Response

from otpauth.core import settings
from otpauth.services.authenticator import ACCESS_TOKEN_COOKIE

REFRESH_TOKEN_COOKIE = "refresh_token"


def set_auth_cookies(response: Response, access_token: str, refresh_token: str | None) -> None:
    """Set httpOnly token cookies. The refresh cookie is only set when issued."""
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        access_token,
        max_age=settings.access_token_lifetime_seconds,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite="lax",
    )
    if refresh_token is not None:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            refresh_token,
            max_age=settings.refresh_token_lifetime_seconds,
            httponly=True,
            secure=settings.auth_cookie_secure,
            samesite="lax",
            path="/api/v0/auth",
        )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    response.delete_cookie(REFRESH_TOKEN_COOKIE, path="/api/v0/auth")
