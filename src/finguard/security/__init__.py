"""
FinGuard Security Package
Adaptive authentication: lockout, rate limiting, risk policy and RBAC
"""

from finguard.core.exceptions import (
    AccessDeniedError, AccountLockedError, AuthenticationError, CounterStoreError,
    CounterStoreTimeoutError, RateLimitExceededError, RiskPolicyError, SecurityError
)

from .audit import AuditLogger
from .authentication import AuthenticationManager, AuthResult
from .brute_force import BruteForceGuard, normalize_identity
from .models import LoginAttemptRecord, LoginFailureReason, LoginLog
from .passwords import PasswordHasher
from .rate_limiting import UNLIMITED, RateLimiter
from .rbac import (
    DEFAULT_ROLE, AuthorizationResolver, PermissionName, RoleCatalog, SystemRole,
    assign_role, revoke_role, seed_authorization_catalog
)
from .risk import RISK_LIMITS, RiskEngine, TransactionLimits
from .schemas import LoginRequest, RegisterRequest, RegistrationType

__all__ = [
    # Exceptions
    'SecurityError',
    'CounterStoreError',
    'CounterStoreTimeoutError',
    'AuthenticationError',
    'AccountLockedError',
    'RateLimitExceededError',
    'AccessDeniedError',
    'RiskPolicyError',

    # Services
    'AuditLogger',
    'AuthenticationManager',
    'AuthResult',
    'BruteForceGuard',
    'PasswordHasher',
    'RateLimiter',
    'RiskEngine',
    'AuthorizationResolver',

    # Models and catalog
    'LoginAttemptRecord',
    'LoginFailureReason',
    'LoginLog',
    'RoleCatalog',
    'SystemRole',
    'PermissionName',
    'DEFAULT_ROLE',
    'RISK_LIMITS',
    'TransactionLimits',
    'UNLIMITED',

    # Schemas
    'LoginRequest',
    'RegisterRequest',
    'RegistrationType',

    # Helpers
    'assign_role',
    'revoke_role',
    'seed_authorization_catalog',
    'normalize_identity',
]
