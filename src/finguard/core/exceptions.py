"""
FinGuard exceptions
"""

from datetime import timedelta
from typing import Optional


class SecurityError(Exception):
    """Base class for security engine errors"""
    pass


class CounterStoreError(SecurityError):
    """Counter store could not be read or updated"""
    pass


class CounterStoreTimeoutError(CounterStoreError):
    """Counter store call exceeded its timeout"""
    pass


class AuthenticationError(SecurityError):
    """Authentication related errors"""
    pass


class AccountLockedError(AuthenticationError):
    """Account is locked due to repeated failed logins"""

    def __init__(self, message: str, unlock_after: Optional[timedelta] = None):
        super().__init__(message)
        self.unlock_after = unlock_after


class RateLimitExceededError(SecurityError):
    """Caller exceeded the request quota for an endpoint"""

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class AccessDeniedError(SecurityError):
    """Access denied exception"""
    pass


class RiskPolicyError(SecurityError):
    """Invalid input to a risk policy operation"""
    pass
