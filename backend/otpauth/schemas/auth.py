"""Pydantic schemas for the token endpoints and the response envelope."""

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Envelope for successful responses."""

    success: bool = True
    data: T


class ErrorResponse(BaseModel):
    """Envelope for failed responses."""

    success: bool = False
    error: str
    code: str = Field(description="Failure kind, e.g. rate_limited or invalid_code")
    fields: dict[str, str] | None = None


class RefreshRequest(BaseModel):
    """Request for token refresh. The token may come from a cookie instead."""

    refresh_token: str | None = Field(None, max_length=256)


class RefreshData(BaseModel):
    """A new access token, plus a new refresh token when rotated."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(description="Access token lifetime in seconds")
    refresh_token: str | None = Field(
        None, description="Present only when the refresh token was rotated"
    )


class SignoutData(BaseModel):
    message: str
    signed_out_at: datetime


class UserResponse(BaseModel):
    """Current user information."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    phone_number: str
    full_name: str | None
    is_active: bool
    otp_verified: bool
    created_at: datetime
