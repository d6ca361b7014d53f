"""
FinGuard Security Database Models
Append-only audit rows for login attempts and successful sign-ins
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column

from finguard.database.models import Base
from finguard.database.types import UTCDateTime, utcnow


class LoginFailureReason(str, Enum):
    """Why a login or registration attempt was counted as a failure"""
    INVALID_INPUT = "invalid_input"
    UNKNOWN_ACCOUNT = "unknown_account"
    INVALID_PASSWORD = "invalid_password"
    INVALID_CREDENTIALS = "invalid_credentials"


class LoginAttemptRecord(Base):
    """One failed login attempt. Rows are never updated or deleted by the engine."""
    __tablename__ = "failed_login_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE")
    )
    email: Mapped[Optional[str]] = mapped_column(String(255))
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    reason: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)

    __table_args__ = (
        Index("ix_failed_login_attempts_email_created_at", "email", "created_at"),
        Index("ix_failed_login_attempts_ip_created_at", "ip_address", "created_at"),
        Index("ix_failed_login_attempts_account_id", "account_id"),
    )

    def __repr__(self) -> str:
        return f"<LoginAttemptRecord {self.email} #{self.attempt_number}>"


class LoginLog(Base):
    """Successful authentication"""
    __tablename__ = "login_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    is_success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    two_factor_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)

    __table_args__ = (
        Index("ix_login_logs_account_id_created_at", "account_id", "created_at"),
    )


@event.listens_for(LoginAttemptRecord, "before_update")
def _reject_attempt_update(mapper, connection, target):
    raise ValueError("Login attempt records are append-only")
