"""Token API endpoints: refresh, signout and current user."""

from fastapi import APIRouter, Body, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from otpauth.api.cookies import REFRESH_TOKEN_COOKIE, clear_auth_cookies, set_auth_cookies
from otpauth.api.deps import CurrentUser, get_refresh_coordinator, get_signout_service
from otpauth.api.errors import failure_response
from otpauth.core.logging import get_logger
from otpauth.schemas import (
    ErrorResponse,
    RefreshData,
    RefreshRequest,
    SignoutData,
    SuccessResponse,
    UserResponse,
)
from otpauth.services.tokens import RefreshCoordinator, SignoutService

logger = get_logger("api.auth")

router = APIRouter(prefix="/auth", tags=["auth"])

UNAUTHORIZED_RESPONSES = {status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse}}


@router.post(
    "/refresh",
    response_model=SuccessResponse[RefreshData],
    responses=UNAUTHORIZED_RESPONSES,
)
async def refresh_tokens(
    request: Request,
    response: Response,
    body: RefreshRequest | None = Body(None),
    coordinator: RefreshCoordinator = Depends(get_refresh_coordinator),
) -> SuccessResponse[RefreshData] | JSONResponse:
    """Exchange a refresh token for a new access token.

    The refresh token is read from the request body or the refresh_token
    cookie. A new refresh token is returned only when the old one was
    rotated.
    """
    presented = (body.refresh_token if body else None) or request.cookies.get(
        REFRESH_TOKEN_COOKIE
    )
    result = await coordinator.refresh(presented)
    if not result.is_ok:
        return failure_response(result.failure, credential=True)  # type: ignore[arg-type]

    outcome = result.unwrap()
    set_auth_cookies(response, outcome.access_token, outcome.refresh_token)
    response.headers["Authorization"] = f"{outcome.token_type} {outcome.access_token}"
    return SuccessResponse(data=RefreshData(**outcome.as_response()))


@router.delete(
    "/signout",
    response_model=SuccessResponse[SignoutData],
    responses=UNAUTHORIZED_RESPONSES,
)
async def signout(
    current: CurrentUser,
    response: Response,
    signout_service: SignoutService = Depends(get_signout_service),
) -> SuccessResponse[SignoutData]:
    """Sign out: revoke the current access token and every refresh token.

    Always succeeds once the caller is authenticated.
    """
    data = await signout_service.signout(current.user, current.claims)
    clear_auth_cookies(response)
    return SuccessResponse(data=SignoutData(**data))


@router.get(
    "/me",
    response_model=SuccessResponse[UserResponse],
    responses=UNAUTHORIZED_RESPONSES,
)
async def get_current_user_info(current: CurrentUser) -> SuccessResponse[UserResponse]:
    """Get the current user's information."""
    return SuccessResponse(data=UserResponse.model_validate(current.user))
