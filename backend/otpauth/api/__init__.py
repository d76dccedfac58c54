# otpauth API
from otpauth.api.router import api_router

__all__ = ["api_router"]
