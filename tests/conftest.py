"""
PyTest configuration and shared fixtures for the FinGuard test suite.

Services are wired against a file-backed SQLite database in ``tmp_path`` so
threads in the concurrency tests can share it, an in-memory counter store
driven by a fake clock, and a no-op sleep.
"""
import os

# Must be set before finguard is imported: the module-level settings are
# built once at import time
os.environ.setdefault("FINGUARD_LOG_TO_FILE", "false")
os.environ.setdefault("FINGUARD_BCRYPT_ROUNDS", "4")

from datetime import datetime, timedelta, timezone
from typing import Generator, Iterable, List, Optional

import pytest
from sqlalchemy import select

from finguard.core.config import Settings
from finguard.core.counter_store import InMemoryCounterStore
from finguard.database.models import Account, RiskLevel
from finguard.database.session import DatabaseManager
from finguard.security.audit import AuditLogger
from finguard.security.authentication import AuthenticationManager
from finguard.security.brute_force import BruteForceGuard
from finguard.security.passwords import PasswordHasher
from finguard.security.rate_limiting import RateLimiter
from finguard.security.rbac import AuthorizationResolver, assign_role, seed_authorization_catalog
from finguard.security.risk import RISK_LIMITS, RiskEngine

STRONG_PASSWORD = "Sunrise!Harbor42"


class FakeClock:
    """Monotonic and wall clock that only move when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.start = start or datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
        self.offset = 0.0

    def monotonic(self) -> float:
        return 10_000.0 + self.offset

    def utcnow(self) -> datetime:
        return self.start + timedelta(seconds=self.offset)

    def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        self.offset += seconds + minutes * 60


class SleepRecorder:
    """Stand-in for time.sleep that records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def test_settings() -> Settings:
    """Isolated settings with fast hashing and the documented security defaults."""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite:///:memory:",
        LOG_TO_FILE=False,
        BCRYPT_ROUNDS=4,
        FAILED_LOGIN_DELAY_SECONDS=2.0,
        MAX_FAILED_LOGIN_ATTEMPTS=5,
        ACCOUNT_LOCKOUT_MINUTES=30,
        RATE_LIMIT_REQUESTS_PER_MINUTE=5,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def db(tmp_path, test_settings) -> Generator[DatabaseManager, None, None]:
    """File-backed SQLite database with the authorization catalog seeded."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'finguard.db'}", config=test_settings)
    manager.create_all()
    with manager.session_scope() as session:
        seed_authorization_catalog(session)
    yield manager
    manager.dispose()


@pytest.fixture
def store(clock) -> InMemoryCounterStore:
    return InMemoryCounterStore(timeout=2.0, clock=clock.monotonic)


@pytest.fixture
def resolver(clock) -> AuthorizationResolver:
    return AuthorizationResolver(clock=clock.utcnow)


@pytest.fixture
def risk_engine(resolver, test_settings, clock) -> RiskEngine:
    return RiskEngine(resolver, config=test_settings, clock=clock.utcnow)


@pytest.fixture
def audit(db, clock) -> AuditLogger:
    return AuditLogger(db, clock=clock.utcnow)


@pytest.fixture
def guard(store, db, audit, risk_engine, test_settings, clock) -> BruteForceGuard:
    return BruteForceGuard(
        store, db, audit=audit, risk_engine=risk_engine, config=test_settings, clock=clock.utcnow
    )


@pytest.fixture
def limiter(store, test_settings) -> RateLimiter:
    return RateLimiter(store, config=test_settings)


@pytest.fixture
def hasher(test_settings) -> PasswordHasher:
    return PasswordHasher(config=test_settings)


@pytest.fixture
def auth_manager(
    db, store, test_settings, hasher, limiter, guard, risk_engine, resolver, audit, sleep, clock
) -> AuthenticationManager:
    return AuthenticationManager(
        db,
        store=store,
        config=test_settings,
        hasher=hasher,
        rate_limiter=limiter,
        guard=guard,
        risk_engine=risk_engine,
        resolver=resolver,
        audit=audit,
        sleep=sleep,
        clock=clock.utcnow,
    )


@pytest.fixture
def create_account(db, hasher, clock):
    """Factory inserting an account with the given roles; returns its email."""

    def _create(
        email: str = "alice@finguard.io",
        password: str = STRONG_PASSWORD,
        roles: Iterable[str] = ("Client",),
        risk_level: RiskLevel = RiskLevel.LOW,
        **fields,
    ) -> str:
        limits = RISK_LIMITS[risk_level]
        with db.session_scope() as session:
            account = Account(
                email=email,
                password_hash=hasher.hash(password),
                risk_level=risk_level,
                daily_transaction_limit=limits.daily,
                monthly_transaction_limit=limits.monthly,
                **fields,
            )
            session.add(account)
            for role_name in roles:
                assign_role(session, account, role_name, assigned_by="test", now=clock.utcnow())
        return email

    return _create


@pytest.fixture
def load_account(db):
    """Load an account (with roles) by email in a short session."""

    def _load(email: str) -> Optional[Account]:
        with db.session_scope() as session:
            return session.scalars(select(Account).where(Account.email == email)).one_or_none()

    return _load


@pytest.fixture
def password() -> str:
    return STRONG_PASSWORD
