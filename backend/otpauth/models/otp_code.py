"""OtpCode model - one-time codes keyed by phone number."""

import math
from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from otpauth.models.base import BaseModel, UTCDateTime, utcnow


class OtpCode(BaseModel):
    """A one-time code sent to a phone number.

    Not owned by a User: codes exist before the user does. At most one code
    per phone is active (unconsumed and unexpired); issuing a new code
    consumes the previous one.
    """

    __tablename__ = "otp_codes"

    __table_args__ = (Index("ix_otp_codes_phone_created", "phone_number", "created_at"),)

    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(10), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    consumed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def minutes_until_expiry(self, now: datetime | None = None) -> int:
        remaining = (self.expires_at - (now or utcnow())).total_seconds()
        return max(0, math.ceil(remaining / 60))

    def __repr__(self) -> str:
        return f"<OtpCode {self.id} expires_at={self.expires_at.isoformat()}>"
