"""OTP API endpoints: send a code, verify it and sign in."""

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from otpauth.api.cookies import set_auth_cookies
from otpauth.api.deps import get_otp_issuer, get_otp_verifier
from otpauth.api.errors import failure_response
from otpauth.schemas import (
    ErrorResponse,
    SendOtpData,
    SendOtpRequest,
    SuccessResponse,
    VerifyOtpData,
    VerifyOtpRequest,
)
from otpauth.services.otp import OtpIssuer, OtpVerifier

router = APIRouter(prefix="/otp", tags=["otp"])

ERROR_RESPONSES = {
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse},
}


@router.post(
    "/send",
    response_model=SuccessResponse[SendOtpData],
    responses={**ERROR_RESPONSES, status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse}},
)
async def send_otp(
    request: SendOtpRequest,
    issuer: OtpIssuer = Depends(get_otp_issuer),
) -> SuccessResponse[SendOtpData] | JSONResponse:
    """Send a one-time code to a phone number.

    Rate limited per phone number. A new code invalidates any earlier one.
    """
    result = await issuer.send_otp(request.phone_number)
    if not result.is_ok:
        return failure_response(result.failure)  # type: ignore[arg-type]
    return SuccessResponse(data=SendOtpData(**result.unwrap()))


@router.post(
    "/verify",
    response_model=SuccessResponse[VerifyOtpData],
    responses={**ERROR_RESPONSES, status.HTTP_403_FORBIDDEN: {"model": ErrorResponse}},
)
async def verify_otp(
    request: VerifyOtpRequest,
    response: Response,
    verifier: OtpVerifier = Depends(get_otp_verifier),
) -> SuccessResponse[VerifyOtpData] | JSONResponse:
    """Verify a code and return an access/refresh token pair.

    Creates the user on first verification for a phone number.
    """
    result = await verifier.verify_otp(request.phone_number, request.code)
    if not result.is_ok:
        return failure_response(result.failure)  # type: ignore[arg-type]
    data = VerifyOtpData(**result.unwrap())
    set_auth_cookies(response, data.access_token, data.refresh_token)
    return SuccessResponse(data=data)
