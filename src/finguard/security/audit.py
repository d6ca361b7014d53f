"""
FinGuard Audit Logging
Append-only login audit trail

Audit writes run in their own transaction and fail open: a database error is
logged and counted in ``dropped_writes`` but never blocks the caller.
"""

import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from finguard.core.logging import LoggerMixin, mask_identifier, sanitize_for_log
from finguard.database.session import DatabaseManager
from finguard.database.types import utcnow
from .models import LoginAttemptRecord, LoginLog


class AuditLogger(LoggerMixin):
    """Login audit trail backed by the relational store"""

    def __init__(self, db: DatabaseManager, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock
        self._dropped_lock = threading.Lock()
        self._dropped_writes = 0

    @property
    def dropped_writes(self) -> int:
        """Number of audit rows lost to storage errors since startup"""
        return self._dropped_writes

    def _dropped(self, what: str) -> None:
        with self._dropped_lock:
            self._dropped_writes += 1
        self.logger.error(f"Audit write dropped: {what}", exc_info=True)

    def record_failed_attempt(
        self,
        attempt_number: int,
        ip_address: str,
        email: Optional[str] = None,
        account_id: Optional[uuid.UUID] = None,
        user_agent: str = "",
        reason: str = "",
    ) -> Optional[LoginAttemptRecord]:
        """Append a failed attempt row; returns None when the write was dropped."""
        record = LoginAttemptRecord(
            account_id=account_id,
            email=email,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500],
            reason=reason,
            attempt_number=attempt_number,
            created_at=self._clock(),
        )
        try:
            with self.db.session_scope() as session:
                session.add(record)
        except SQLAlchemyError:
            self._dropped(
                f"failed attempt #{attempt_number} for {sanitize_for_log(email)} "
                f"from {mask_identifier(ip_address)}"
            )
            return None
        return record

    def record_login(
        self,
        account_id: uuid.UUID,
        ip_address: str,
        user_agent: str = "",
        two_factor_used: bool = False,
    ) -> bool:
        entry = LoginLog(
            account_id=account_id,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500],
            two_factor_used=two_factor_used,
            created_at=self._clock(),
        )
        try:
            with self.db.session_scope() as session:
                session.add(entry)
        except SQLAlchemyError:
            self._dropped(f"login log for account {account_id}")
            return False
        return True

    def count_failures(self, email: str, window: timedelta) -> int:
        since = self._clock() - window
        with self.db.session_scope() as session:
            stmt = select(func.count(LoginAttemptRecord.id)).where(
                LoginAttemptRecord.email == email,
                LoginAttemptRecord.created_at >= since,
            )
            return session.scalar(stmt) or 0

    def count_failures_from_source(self, ip_address: str, window: timedelta) -> int:
        since = self._clock() - window
        with self.db.session_scope() as session:
            stmt = select(func.count(LoginAttemptRecord.id)).where(
                LoginAttemptRecord.ip_address == ip_address,
                LoginAttemptRecord.created_at >= since,
            )
            return session.scalar(stmt) or 0

    def failures_for(self, email: str, window: timedelta) -> List[LoginAttemptRecord]:
        """Failed attempts for ``email`` inside the window, oldest first."""
        since = self._clock() - window
        with self.db.session_scope() as session:
            stmt = (
                select(LoginAttemptRecord)
                .where(
                    LoginAttemptRecord.email == email,
                    LoginAttemptRecord.created_at >= since,
                )
                .order_by(LoginAttemptRecord.created_at, LoginAttemptRecord.attempt_number)
            )
            return list(session.scalars(stmt))

    def logins_for(self, account_id: uuid.UUID, limit: int = 20) -> List[LoginLog]:
        with self.db.session_scope() as session:
            stmt = (
                select(LoginLog)
                .where(LoginLog.account_id == account_id)
                .order_by(LoginLog.created_at.desc())
                .limit(limit)
            )
            return list(session.scalars(stmt))
