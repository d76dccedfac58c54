"""Pydantic schemas for the OTP endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class SendOtpRequest(BaseModel):
    phone_number: str = Field(..., min_length=1, max_length=32, examples=["03001234567"])


class SendOtpData(BaseModel):
    message: str
    phone_number: str = Field(description="Masked phone number")
    expires_in_minutes: int
    sent_at: datetime


class VerifyOtpRequest(BaseModel):
    phone_number: str = Field(..., min_length=1, max_length=32)
    code: str = Field(..., min_length=1, max_length=10, examples=["123456"])


class UserSummary(BaseModel):
    id: str
    phone_number: str
    full_name: str | None
    otp_verified: bool


class VerifyOtpData(BaseModel):
    message: str
    phone_number: str = Field(description="Masked phone number")
    verified_at: datetime
    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int = Field(description="Access token lifetime in seconds")
    user: UserSummary
