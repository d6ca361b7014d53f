"""
FinGuard Database Package
ORM models and session management for accounts, roles and audit rows
"""

from .models import (
    Account, Base, KycStatus, Permission, RiskLevel, Role, RoleAssignment,
    RolePermissionGrant, TimestampMixin
)
from .session import SERIALIZABLE, DatabaseManager
from .types import UTCDateTime, utcnow

__all__ = [
    'Account',
    'Base',
    'DatabaseManager',
    'KycStatus',
    'Permission',
    'RiskLevel',
    'Role',
    'RoleAssignment',
    'RolePermissionGrant',
    'SERIALIZABLE',
    'TimestampMixin',
    'UTCDateTime',
    'utcnow',
]
