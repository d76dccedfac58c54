"""Failure kinds and result values shared by the auth services.

Services never raise for expected failures. They return a Result carrying
either a value or a Failure; the HTTP layer maps Failure.kind to a status.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_CONSUMED = "already_consumed"
    INVALID_CODE = "invalid_code"
    MISSING_TOKEN = "missing_token"
    BAD_SIGNATURE = "bad_signature"
    MALFORMED = "malformed"
    INVALID_ISSUER_OR_AUDIENCE = "invalid_issuer_or_audience"
    UNAUTHORIZED = "unauthorized"
    ACCOUNT_DISABLED = "account_disabled"
    SEND_FAILED = "send_failed"
    SYSTEM = "system"


# Kinds that mean "the presented credential is not acceptable"
TOKEN_FAILURE_KINDS = frozenset(
    {
        ErrorKind.MISSING_TOKEN,
        ErrorKind.BAD_SIGNATURE,
        ErrorKind.MALFORMED,
        ErrorKind.INVALID_ISSUER_OR_AUDIENCE,
        ErrorKind.UNAUTHORIZED,
    }
)


@dataclass(frozen=True)
class Failure:
    """A typed, expected failure.

    message is safe to show to clients; detail is for logs and
    development responses only.
    """

    kind: ErrorKind
    message: str
    detail: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    retry_after: int | None = None

    @property
    def is_retryable(self) -> bool:
        return self.kind is ErrorKind.SYSTEM


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    failure: Failure | None = None

    @property
    def is_ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        """Return the value, raising if this result is a failure."""
        if self.failure is not None:
            raise ValueError(f"unwrap() on failed result: {self.failure.kind.value}")
        return self.value  # type: ignore[return-value]


def ok(value: T) -> Result[T]:
    return Result(value=value)


def fail(kind: ErrorKind, message: str, detail: str | None = None, **extra: Any) -> Result[Any]:
    return Result(failure=Failure(kind=kind, message=message, detail=detail, **extra))
