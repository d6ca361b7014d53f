"""
FinGuard Brute-Force Protection
Per-account failed-login counting, lockout and audit trail

The live lockout decision comes from the counter store
(``failed_attempts:{email}``, expiring one lockout period after the first
failure) and nowhere else. The account row mirrors it: the counter is bumped
while the row is write-locked, so ``failed_login_attempts`` follows the
counter (restarting at 1 with a fresh window) and ``locked_until`` is the
counter's own expiry.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select, update

from finguard.core.config import Settings, settings as default_settings
from finguard.core.counter_store import CounterStore
from finguard.core.exceptions import AccountLockedError, CounterStoreError
from finguard.core.logging import LoggerMixin, mask_identifier, sanitize_for_log
from finguard.database.models import Account, RiskLevel
from finguard.database.session import DatabaseManager
from finguard.database.types import utcnow
from .audit import AuditLogger
from .models import LoginAttemptRecord, LoginFailureReason
from .risk import LOCKOUT_RISK_NOTE, RiskEngine

LOCKED_MESSAGE = "Account is temporarily locked due to too many failed attempts."


def normalize_identity(identity: Optional[str]) -> str:
    return (identity or "").strip().lower()


class BruteForceGuard(LoggerMixin):
    """Tracks failed logins per email and locks the account at the threshold"""

    def __init__(
        self,
        store: CounterStore,
        db: DatabaseManager,
        audit: Optional[AuditLogger] = None,
        risk_engine: Optional[RiskEngine] = None,
        max_attempts: Optional[int] = None,
        lockout_duration: Optional[timedelta] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        config = config or default_settings
        self.store = store
        self.db = db
        self._clock = clock
        self.audit = audit or AuditLogger(db, clock=clock)
        self.risk_engine = risk_engine or RiskEngine(config=config, clock=clock)
        self.max_attempts = max_attempts or config.MAX_FAILED_LOGIN_ATTEMPTS
        self.lockout_duration = lockout_duration or timedelta(minutes=config.ACCOUNT_LOCKOUT_MINUTES)

    @staticmethod
    def key(identity: str) -> str:
        return f"failed_attempts:{normalize_identity(identity)}"

    def failed_attempts(self, identity: str) -> int:
        return self.store.value(self.key(identity))

    def is_locked(self, identity: str) -> bool:
        try:
            return self.failed_attempts(identity) >= self.max_attempts
        except CounterStoreError:
            self.logger.error(
                f"Lockout check failed for {sanitize_for_log(normalize_identity(identity))}; treating as locked",
                exc_info=True,
            )
            return True

    def lockout_remaining(self, identity: str) -> Optional[timedelta]:
        """Time until the lockout lifts, None when not locked."""
        try:
            entry = self.store.get(self.key(identity))
        except CounterStoreError:
            return self.lockout_duration
        if entry is None or entry.value < self.max_attempts:
            return None
        if entry.expires_in is None:
            return self.lockout_duration
        return timedelta(seconds=entry.expires_in)

    def ensure_not_locked(self, identity: str) -> None:
        if self.is_locked(identity):
            raise AccountLockedError(LOCKED_MESSAGE, unlock_after=self.lockout_remaining(identity))

    def is_account_locked(self, account: Account) -> bool:
        """Persisted mirror of the lockout; informational, never a login decision."""
        return account.is_locked_out(self._clock())

    def record_failure(
        self,
        identity: str,
        source_address: str,
        user_agent: str = "",
        reason: str = LoginFailureReason.INVALID_CREDENTIALS.value,
    ) -> int:
        """
        Count a failed attempt and return its sequence number.

        Counter store errors propagate so the caller denies the request;
        audit write errors are absorbed by the audit logger.
        """
        email = normalize_identity(identity)
        attempt, account_id = self._count_failure(email)

        self.audit.record_failed_attempt(
            attempt_number=attempt,
            ip_address=source_address,
            email=email or None,
            account_id=account_id,
            user_agent=user_agent,
            reason=reason,
        )

        if attempt >= self.max_attempts:
            self.logger.warning(
                f"Account lockout threshold reached for {sanitize_for_log(email)} "
                f"(attempt {attempt}) from {mask_identifier(source_address)}"
            )
        return attempt

    def _count_failure(self, email: str) -> Tuple[int, Optional[uuid.UUID]]:
        """Bump the counter and the account row under one row lock."""
        with self.db.session_scope() as session:
            # The UPDATE holds the row (IMMEDIATE on SQLite) until commit, so
            # counter order and persisted order are the same
            result = session.execute(
                update(Account)
                .where(Account.email == email)
                .values(failed_login_attempts=Account.failed_login_attempts + 1)
                .execution_options(synchronize_session=False)
            )
            attempt = self.store.increment(self.key(email), self.lockout_duration)
            if not email or result.rowcount == 0:
                return attempt, None

            account = session.scalars(select(Account).where(Account.email == email)).one()
            self._mirror_counter(account, email, attempt)
            return attempt, account.id

    def _mirror_counter(self, account: Account, email: str, attempt: int) -> None:
        if attempt == 1:
            # Fresh window: whatever the row held belongs to an expired one
            account.failed_login_attempts = 1

        if attempt < self.max_attempts:
            account.locked_until = None
            return
        if self.is_account_locked(account):
            return

        remaining = self.lockout_remaining(email) or self.lockout_duration
        account.locked_until = self._clock() + remaining
        account.updated_by = "system"
        self.risk_engine.escalate(account, RiskLevel.MEDIUM, "system", LOCKOUT_RISK_NOTE)
        self.log_with_context(
            logging.WARNING,
            f"Account {account.id} locked until {account.locked_until.isoformat()}",
            {
                "account_id": str(account.id),
                "failed_attempts": account.failed_login_attempts,
                "locked_until": account.locked_until.isoformat(),
            },
        )

    def reset(self, identity: str) -> None:
        """Clear the live counter and the persisted count and lockout together."""
        email = normalize_identity(identity)
        with self.db.session_scope() as session:
            session.execute(
                update(Account)
                .where(Account.email == email)
                .values(failed_login_attempts=0, locked_until=None)
                .execution_options(synchronize_session=False)
            )
            self.store.delete(self.key(email))

    def count_recent_failures(self, identity: str, window: timedelta) -> int:
        return self.audit.count_failures(normalize_identity(identity), window)

    def recent_failures(self, identity: str, window: timedelta) -> List[LoginAttemptRecord]:
        return self.audit.failures_for(normalize_identity(identity), window)

    def is_source_blocked(
        self,
        source_address: str,
        max_attempts: Optional[int] = None,
        window: Optional[timedelta] = None,
    ) -> bool:
        """Too many failures from one address inside the window, across all accounts."""
        threshold = max_attempts or self.max_attempts
        window = window or self.lockout_duration
        return self.audit.count_failures_from_source(source_address, window) >= threshold
