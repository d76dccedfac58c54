"""otpauth API Router - aggregates the versioned routes."""

from fastapi import APIRouter

from otpauth.api import auth, otp

# All routes are prefixed with /api/v0
api_router = APIRouter(prefix="/api/v0")

api_router.include_router(otp.router)
api_router.include_router(auth.router)
