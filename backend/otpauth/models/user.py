"""User model - one row per verified phone number."""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from otpauth.models.base import BaseModel

if TYPE_CHECKING:
    from otpauth.models.refresh_token import RefreshToken
    from otpauth.models.token_blacklist import TokenBlacklist


class User(BaseModel):
    """A phone-number identity.

    Created on the first successful OTP verification for a phone number.
    Profile fields belong to the profile subsystem; only the ones needed
    for the verification response live here.
    """

    __tablename__ = "users"

    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    otp_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    blacklisted_tokens: Mapped[list["TokenBlacklist"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.id}>"
