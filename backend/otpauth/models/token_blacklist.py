"""Blacklisted access tokens - survives process restarts."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from otpauth.models.base import BaseModel, UTCDateTime

if TYPE_CHECKING:
    from otpauth.models.user import User


class TokenBlacklist(BaseModel):
    """A revoked access token identified by its JTI claim.

    Entries are created on signout and swept once the token's own expiry
    has passed.
    """

    __tablename__ = "token_blacklist"

    jti: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    user: Mapped["User"] = relationship(back_populates="blacklisted_tokens")
