"""RefreshToken model - server-tracked opaque refresh credentials."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from otpauth.models.base import BaseModel, UTCDateTime

if TYPE_CHECKING:
    from otpauth.models.user import User


class RefreshToken(BaseModel):
    """An opaque refresh token.

    Only the SHA-256 digest of the token is stored; the raw value is handed
    to the client once at issuance. A user may hold many (one per session).
    """

    __tablename__ = "refresh_tokens"

    token_digest: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")

    def __repr__(self) -> str:
        return f"<RefreshToken {self.id} user={self.user_id}>"
