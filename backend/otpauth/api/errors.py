"""Maps service failures to HTTP responses.

This is the only place failure kinds become status codes.
"""

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from otpauth.core import settings
from otpauth.core.logging import get_logger
from otpauth.services.errors import TOKEN_FAILURE_KINDS, ErrorKind, Failure

logger = get_logger("api.errors")

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.NOT_FOUND: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.EXPIRED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.ALREADY_CONSUMED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.INVALID_CODE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.MISSING_TOKEN: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.BAD_SIGNATURE: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.MALFORMED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_ISSUER_OR_AUDIENCE: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.ACCOUNT_DISABLED: status.HTTP_403_FORBIDDEN,
    ErrorKind.SEND_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.SYSTEM: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Client-facing message for every credential failure; the real reason is logged
UNAUTHORIZED_MESSAGE = "Invalid or expired token"
SYSTEM_MESSAGE = "An internal error occurred"


class FailureError(Exception):
    """Raised from dependencies to short-circuit a request with a Failure."""

    def __init__(self, failure: Failure, *, credential: bool = False):
        super().__init__(failure.message)
        self.failure = failure
        self.credential = credential


def failure_response(failure: Failure, *, credential: bool = False) -> JSONResponse:
    """Build the error envelope for a failure.

    credential=True marks failures about a presented token (authentication
    and refresh): expired and not-found then become 401 as well, and the
    message is flattened so clients cannot tell which check failed.
    """
    status_code = STATUS_BY_KIND[failure.kind]
    message = failure.message
    headers: dict[str, str] = {}

    if credential and failure.kind in (ErrorKind.EXPIRED, ErrorKind.NOT_FOUND):
        status_code = status.HTTP_401_UNAUTHORIZED
    if status_code == status.HTTP_401_UNAUTHORIZED:
        logger.info(
            f"Rejected credential: {failure.kind.value} ({failure.detail or failure.message})",
            extra={"failure_kind": failure.kind.value},
        )
        if credential or failure.kind in TOKEN_FAILURE_KINDS:
            message = UNAUTHORIZED_MESSAGE
        headers["WWW-Authenticate"] = "Bearer"
    elif failure.kind is ErrorKind.SYSTEM:
        logger.error(
            f"System failure: {failure.message} ({failure.detail})",
            extra={"failure_kind": failure.kind.value},
        )
        message = SYSTEM_MESSAGE if settings.is_production else (failure.detail or failure.message)
    elif failure.kind is ErrorKind.SEND_FAILED:
        logger.warning(f"Delivery failure: {failure.detail or failure.message}")

    if failure.retry_after is not None:
        headers["Retry-After"] = str(failure.retry_after)

    content: dict = {"success": False, "error": message, "code": failure.kind.value}
    if failure.fields:
        content["fields"] = failure.fields
    return JSONResponse(status_code=status_code, content=content, headers=headers or None)


async def failure_error_handler(request: Request, exc: FailureError) -> JSONResponse:
    return failure_response(exc.failure, credential=exc.credential)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields: dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        fields[".".join(loc) or "body"] = error.get("msg", "is invalid")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder(
            {
                "success": False,
                "error": "Validation failed",
                "code": ErrorKind.VALIDATION.value,
                "fields": fields,
            }
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FailureError, failure_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, validation_error_handler  # type: ignore[arg-type]
    )
