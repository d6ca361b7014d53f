"""
FinGuard Authentication Manager
Login and registration orchestration over the security services

Checks run fail-fast in a fixed order: rate limit, lockout, input validity,
credentials, then account state. Lockout is decided by the guard's counter
alone; ``Account.locked_until`` only mirrors it. Every credential failure gets
the same message and the same delay whether or not the account exists.
"""

import math
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from finguard.core.config import Settings, settings as default_settings
from finguard.core.counter_store import CounterStore, create_counter_store
from finguard.core.logging import LoggerMixin, mask_identifier, sanitize_for_log
from finguard.database.models import Account, KycStatus, RiskLevel
from finguard.database.session import DatabaseManager
from finguard.database.types import utcnow
from .audit import AuditLogger
from .brute_force import LOCKED_MESSAGE, BruteForceGuard, normalize_identity
from .models import LoginFailureReason
from .passwords import PasswordHasher
from .rate_limiting import RateLimiter
from .rbac import AuthorizationResolver, RoleCatalog, assign_role
from .risk import RiskEngine
from .schemas import LoginRequest, RegisterRequest

LOGIN_ENDPOINT = "login"
REGISTER_ENDPOINT = "register"

TOO_MANY_LOGINS = "Too many login attempts. Please try again later."
TOO_MANY_REGISTRATIONS = "Too many registration attempts. Please try again later."
REGISTRATION_LOCKED = "Account is temporarily locked. Please try again later."
INVALID_CREDENTIALS = "Invalid email or password"
INVALID_INPUT = "Invalid input detected"
ACCOUNT_DEACTIVATED = "Account is deactivated. Please contact support."
ACCOUNT_RESTRICTED = "Account access is restricted. Please contact support."
EMAIL_NOT_VERIFIED = "Email address has not been verified."
EMAIL_REGISTERED = "Email already registered"
LOGIN_FAILED = "Login failed"
REGISTRATION_FAILED = "Registration failed"


@dataclass
class AuthResult:
    """Outcome of a login or registration attempt"""
    success: bool
    error: Optional[str] = None
    failed_attempts: Optional[int] = None
    account_locked: bool = False
    unlock_after_minutes: Optional[int] = None
    account_id: Optional[uuid.UUID] = None
    primary_role: Optional[str] = None

    @classmethod
    def ok(cls, account_id: uuid.UUID, primary_role: Optional[str] = None) -> "AuthResult":
        return cls(success=True, account_id=account_id, primary_role=primary_role)

    @classmethod
    def failure(cls, error: str, **kwargs: Any) -> "AuthResult":
        return cls(success=False, error=error, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            data["error"] = self.error
        if self.failed_attempts is not None:
            data["failedAttempts"] = self.failed_attempts
        if self.account_locked:
            data["accountLocked"] = True
        if self.unlock_after_minutes is not None:
            data["unlockAfterMinutes"] = self.unlock_after_minutes
        if self.account_id is not None:
            data["accountId"] = str(self.account_id)
        if self.primary_role is not None:
            data["primaryRole"] = self.primary_role
        return data


def _raw_email(request_data: Union[Mapping[str, Any], LoginRequest, RegisterRequest, None]) -> str:
    if isinstance(request_data, (LoginRequest, RegisterRequest)):
        return request_data.email
    if isinstance(request_data, Mapping):
        value = request_data.get("email")
        return value if isinstance(value, str) else ""
    return ""


def _minutes(remaining: Optional[timedelta]) -> int:
    if remaining is None:
        return 0
    return max(1, math.ceil(remaining.total_seconds() / 60))


class AuthenticationManager(LoggerMixin):
    """
    Adaptive authentication entry point.

    Thread-safe: holds only shared services and opens a fresh database
    session per operation.
    """

    def __init__(
        self,
        db: DatabaseManager,
        store: Optional[CounterStore] = None,
        config: Optional[Settings] = None,
        hasher: Optional[PasswordHasher] = None,
        rate_limiter: Optional[RateLimiter] = None,
        guard: Optional[BruteForceGuard] = None,
        risk_engine: Optional[RiskEngine] = None,
        resolver: Optional[AuthorizationResolver] = None,
        audit: Optional[AuditLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or default_settings
        self.db = db
        self._clock = clock
        self._sleep = sleep
        store = store or create_counter_store(self.config)

        self.hasher = hasher or PasswordHasher(config=self.config)
        self.resolver = resolver or AuthorizationResolver(clock=clock)
        self.risk_engine = risk_engine or RiskEngine(self.resolver, config=self.config, clock=clock)
        self.audit = audit or AuditLogger(db, clock=clock)
        self.rate_limiter = rate_limiter or RateLimiter(store, config=self.config)
        self.guard = guard or BruteForceGuard(
            store, db, audit=self.audit, risk_engine=self.risk_engine, config=self.config, clock=clock
        )
        self.brute_force_enabled = self.config.BRUTE_FORCE_PROTECTION_ENABLED
        self.failure_delay = self.config.FAILED_LOGIN_DELAY_SECONDS

    # Login

    def login(
        self,
        request_data: Union[Mapping[str, Any], LoginRequest],
        source_address: str,
        user_agent: str = "",
    ) -> AuthResult:
        try:
            return self._login(request_data, source_address or "unknown", user_agent or "")
        except Exception:
            self.logger.error(
                f"Login error for {sanitize_for_log(normalize_identity(_raw_email(request_data)))} "
                f"from {mask_identifier(source_address)}",
                exc_info=True,
            )
            return AuthResult.failure(LOGIN_FAILED)

    def _login(
        self,
        request_data: Union[Mapping[str, Any], LoginRequest],
        source_address: str,
        user_agent: str,
    ) -> AuthResult:
        if self.rate_limiter.is_limited(LOGIN_ENDPOINT, source_address):
            self.logger.warning(f"Login rate limit exceeded from {mask_identifier(source_address)}")
            return AuthResult.failure(TOO_MANY_LOGINS)
        self.rate_limiter.record_request(LOGIN_ENDPOINT, source_address)

        email = normalize_identity(_raw_email(request_data))
        if self.brute_force_enabled and self.guard.is_locked(email):
            self.logger.warning(f"Login attempt on locked account {sanitize_for_log(email)}")
            return self._locked_result(self.guard.lockout_remaining(email))

        try:
            request = (
                request_data if isinstance(request_data, LoginRequest)
                else LoginRequest.model_validate(request_data)
            )
        except ValidationError:
            self.logger.warning(f"Invalid login input from {mask_identifier(source_address)}")
            return self._credential_failure(email, source_address, user_agent, LoginFailureReason.INVALID_INPUT)

        account = self._load_account(request.email)
        if account is None:
            return self._credential_failure(
                request.email, source_address, user_agent, LoginFailureReason.UNKNOWN_ACCOUNT
            )
        if not self.hasher.verify(request.password, account.password_hash):
            return self._credential_failure(
                request.email, source_address, user_agent, LoginFailureReason.INVALID_PASSWORD
            )

        if not account.is_active:
            self.logger.warning(f"Login attempt on deactivated account {account.id}")
            return AuthResult.failure(ACCOUNT_DEACTIVATED)
        if not self.risk_engine.can_authenticate(account):
            self.logger.warning(f"Login attempt on restricted account {account.id}")
            return AuthResult.failure(ACCOUNT_RESTRICTED)
        if self.config.REQUIRE_EMAIL_VERIFICATION and not account.email_verified:
            return AuthResult.failure(EMAIL_NOT_VERIFIED)

        if self.brute_force_enabled:
            self.guard.reset(request.email)
        self._record_login_metadata(account.id, source_address, user_agent)
        self.audit.record_login(
            account.id, source_address, user_agent, two_factor_used=bool(request.two_factor_code)
        )

        primary_role = self.resolver.primary_role(account)
        self.logger.info(f"Successful login for account {account.id} ({primary_role})")
        return AuthResult.ok(account.id, primary_role)

    def _credential_failure(
        self,
        email: str,
        source_address: str,
        user_agent: str,
        reason: LoginFailureReason,
    ) -> AuthResult:
        attempt = None
        locked = False
        if self.brute_force_enabled:
            attempt = self.guard.record_failure(email, source_address, user_agent, reason.value)
            locked = attempt >= self.guard.max_attempts

        self._sleep(self.failure_delay)

        result = AuthResult.failure(INVALID_CREDENTIALS, failed_attempts=attempt, account_locked=locked)
        if locked:
            result.unlock_after_minutes = _minutes(self.guard.lockout_remaining(email))
        return result

    def _locked_result(self, remaining: Optional[timedelta]) -> AuthResult:
        return AuthResult.failure(
            LOCKED_MESSAGE,
            account_locked=True,
            unlock_after_minutes=_minutes(remaining or self.guard.lockout_duration),
        )

    def _load_account(self, email: str) -> Optional[Account]:
        with self.db.session_scope() as session:
            return session.scalars(select(Account).where(Account.email == email)).one_or_none()

    def _record_login_metadata(self, account_id: uuid.UUID, source_address: str, user_agent: str) -> None:
        with self.db.session_scope() as session:
            session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(
                    last_login_at=self._clock(),
                    last_login_ip=source_address,
                    last_login_user_agent=user_agent[:500],
                )
                .execution_options(synchronize_session=False)
            )

    # Registration

    def register(
        self,
        request_data: Union[Mapping[str, Any], RegisterRequest],
        source_address: str,
        user_agent: str = "",
    ) -> AuthResult:
        try:
            return self._register(request_data, source_address or "unknown", user_agent or "")
        except Exception:
            self.logger.error(
                f"Registration error for {sanitize_for_log(normalize_identity(_raw_email(request_data)))}",
                exc_info=True,
            )
            return AuthResult.failure(REGISTRATION_FAILED)

    def _register(
        self,
        request_data: Union[Mapping[str, Any], RegisterRequest],
        source_address: str,
        user_agent: str,
    ) -> AuthResult:
        if self.rate_limiter.is_limited(REGISTER_ENDPOINT, source_address):
            self.logger.warning(f"Registration rate limit exceeded from {mask_identifier(source_address)}")
            return AuthResult.failure(TOO_MANY_REGISTRATIONS)
        self.rate_limiter.record_request(REGISTER_ENDPOINT, source_address)

        email = normalize_identity(_raw_email(request_data))
        if self.brute_force_enabled and self.guard.is_locked(email):
            return AuthResult.failure(
                REGISTRATION_LOCKED,
                account_locked=True,
                unlock_after_minutes=_minutes(self.guard.lockout_remaining(email) or self.guard.lockout_duration),
            )

        try:
            request = (
                request_data if isinstance(request_data, RegisterRequest)
                else RegisterRequest.model_validate(request_data)
            )
        except ValidationError:
            if self.brute_force_enabled:
                self.guard.record_failure(
                    email, source_address, user_agent, LoginFailureReason.INVALID_INPUT.value
                )
            self.logger.warning(f"Invalid registration input from {mask_identifier(source_address)}")
            return AuthResult.failure(INVALID_INPUT)

        role_name = RoleCatalog.role_for_registration(request.registration_type.value)
        account_id = self._create_account(request, role_name)
        if account_id is None:
            return AuthResult.failure(EMAIL_REGISTERED)

        if self.brute_force_enabled:
            self.guard.reset(request.email)
        self.logger.info(f"Registered account {account_id} for {sanitize_for_log(request.email)} as {role_name}")
        return AuthResult.ok(account_id, role_name)

    def _create_account(self, request: RegisterRequest, role_name: str) -> Optional[uuid.UUID]:
        """Insert the account under a serializable transaction; None if the email is taken."""
        password_hash = self.hasher.hash(request.password)
        limits = self.risk_engine.limits_for(RiskLevel.LOW)
        now = self._clock()

        try:
            with self.db.serializable_scope() as session:
                existing = session.scalar(select(Account.id).where(Account.email == request.email))
                if existing is not None:
                    return None

                account = Account(
                    email=request.email,
                    password_hash=password_hash,
                    phone=request.phone,
                    first_name=request.first_name,
                    last_name=request.last_name,
                    is_active=True,
                    email_verified=False,
                    failed_login_attempts=0,
                    kyc_status=KycStatus.PENDING,
                    risk_level=RiskLevel.LOW,
                    risk_assessed_at=now,
                    risk_assessed_by="system",
                    daily_transaction_limit=limits.daily,
                    monthly_transaction_limit=limits.monthly,
                    created_at=now,
                    updated_at=now,
                    created_by="system",
                    updated_by="system",
                )
                session.add(account)
                assign_role(session, account, role_name, assigned_by="system:registration", now=now)
                session.flush()
                return account.id
        except IntegrityError:
            self.logger.info(f"Concurrent registration for {sanitize_for_log(request.email)} lost the race")
            return None
        except OperationalError:
            # Serialization failure: the competing transaction may have won
            if self.email_exists(request.email):
                return None
            raise

    # Account administration

    def email_exists(self, email: str) -> bool:
        with self.db.session_scope() as session:
            stmt = select(Account.id).where(Account.email == normalize_identity(email))
            return session.scalar(stmt) is not None

    def deactivate_account(self, email: str, deactivated_by: str = "system") -> bool:
        with self.db.session_scope() as session:
            result = session.execute(
                update(Account)
                .where(Account.email == normalize_identity(email))
                .values(is_active=False, updated_by=deactivated_by, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount > 0
        if changed:
            self.logger.warning(f"Account {sanitize_for_log(email)} deactivated by {deactivated_by}")
        return changed

    def reactivate_account(self, email: str, reactivated_by: str = "system") -> bool:
        """Reactivate the account and clear any lockout."""
        with self.db.session_scope() as session:
            result = session.execute(
                update(Account)
                .where(Account.email == normalize_identity(email))
                .values(is_active=True, updated_by=reactivated_by, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount > 0
        if changed:
            self.guard.reset(email)
            self.logger.info(f"Account {sanitize_for_log(email)} reactivated by {reactivated_by}")
        return changed
