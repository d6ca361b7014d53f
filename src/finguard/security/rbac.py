"""
FinGuard Role-Based Access Control (RBAC)
System role catalog and resolution of an account's roles and permissions
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from finguard.core.exceptions import AccessDeniedError
from finguard.core.logging import LoggerMixin, get_logger
from finguard.database.models import Account, Permission, Role, RoleAssignment, RolePermissionGrant
from finguard.database.types import utcnow

logger = get_logger(__name__)


class SystemRole(str, Enum):
    """System role names"""
    # Client roles
    CLIENT = "Client"
    INVESTOR = "Investor"
    PREMIUM_INVESTOR = "PremiumInvestor"
    BUSINESS_INVESTOR = "BusinessInvestor"

    # Advisor / manager roles
    FINANCIAL_ADVISOR = "FinancialAdvisor"
    WEALTH_MANAGER = "WealthManager"

    # Operational roles
    SUPPORT_AGENT = "SupportAgent"
    FRAUD_ANALYST = "FraudAnalyst"
    COMPLIANCE_OFFICER = "ComplianceOfficer"

    # Administrative roles
    FINANCE_ADMIN = "FinanceAdmin"
    SUPER_ADMIN = "SuperAdmin"


class PermissionName(str, Enum):
    """System permissions"""
    # Accounts
    ACCOUNTS_READ_SELF = "accounts:read:self"
    ACCOUNTS_READ_ALL = "accounts:read:all"
    ACCOUNTS_CREATE = "accounts:create"
    ACCOUNTS_UPDATE_SELF = "accounts:update:self"
    ACCOUNTS_UPDATE_ALL = "accounts:update:all"

    # Transactions
    TRANSACTIONS_READ_SELF = "transactions:read:self"
    TRANSACTIONS_READ_ALL = "transactions:read:all"
    TRANSACTIONS_CREATE = "transactions:create"
    TRANSACTIONS_REVERSE = "transactions:reverse"

    # Investments
    INVESTMENTS_READ_SELF = "investments:read:self"
    INVESTMENTS_READ_ALL = "investments:read:all"
    INVESTMENTS_RECOMMEND = "investments:recommend"
    INVESTMENTS_MANAGE_PORTFOLIO = "investments:manage:portfolio"

    # Fraud
    FRAUD_ALERTS_READ = "fraud:alerts:read"
    FRAUD_TRANSACTIONS_REVIEW = "fraud:transactions:review"
    FRAUD_RULES_MANAGE = "fraud:rules:manage"

    # Compliance
    COMPLIANCE_REPORTS_GENERATE = "compliance:reports:generate"
    COMPLIANCE_AUDIT_READ = "compliance:audit:read"

    # Users
    USERS_READ_SELF = "users:read:self"
    USERS_READ_ALL = "users:read:all"
    USERS_UPDATE_SELF = "users:update:self"
    USERS_UPDATE_ALL = "users:update:all"
    USERS_ROLES_MANAGE = "users:roles:manage"


DEFAULT_ROLE = SystemRole.CLIENT.value


@dataclass(frozen=True)
class PermissionDefinition:
    """Catalog entry for a permission"""
    name: str
    description: str
    category: str
    scope: str
    is_sensitive: bool


@dataclass(frozen=True)
class RoleDefinition:
    """Catalog entry for a role with the permissions it is granted"""
    name: str
    description: str
    category: str
    priority: int
    permissions: FrozenSet[str]
    is_system_role: bool = True
    can_be_assigned: bool = True
    can_delegate: bool = False


P = PermissionName

_CLIENT_PERMISSIONS = frozenset({
    P.ACCOUNTS_READ_SELF.value,
    P.ACCOUNTS_UPDATE_SELF.value,
    P.TRANSACTIONS_READ_SELF.value,
    P.TRANSACTIONS_CREATE.value,
    P.INVESTMENTS_READ_SELF.value,
    P.USERS_READ_SELF.value,
    P.USERS_UPDATE_SELF.value,
})

_ADVISOR_PERMISSIONS = frozenset({
    P.INVESTMENTS_READ_ALL.value,
    P.INVESTMENTS_RECOMMEND.value,
    P.INVESTMENTS_MANAGE_PORTFOLIO.value,
    P.USERS_READ_ALL.value,
})


class RoleCatalog:
    """Registry of the system roles, permissions and management rights"""

    PERMISSIONS: Tuple[PermissionDefinition, ...] = (
        PermissionDefinition(P.ACCOUNTS_READ_SELF.value, "View own accounts", "Account", "client", False),
        PermissionDefinition(P.ACCOUNTS_READ_ALL.value, "View all accounts", "Account", "admin", True),
        PermissionDefinition(P.ACCOUNTS_CREATE.value, "Create new accounts", "Account", "admin", True),
        PermissionDefinition(P.ACCOUNTS_UPDATE_SELF.value, "Update own account", "Account", "client", False),
        PermissionDefinition(P.ACCOUNTS_UPDATE_ALL.value, "Update any account", "Account", "admin", True),
        PermissionDefinition(P.TRANSACTIONS_READ_SELF.value, "View own transactions", "Transaction", "client", False),
        PermissionDefinition(P.TRANSACTIONS_READ_ALL.value, "View all transactions", "Transaction", "admin", True),
        PermissionDefinition(P.TRANSACTIONS_CREATE.value, "Create transactions", "Transaction", "client", False),
        PermissionDefinition(P.TRANSACTIONS_REVERSE.value, "Reverse transactions", "Transaction", "admin", True),
        PermissionDefinition(P.INVESTMENTS_READ_SELF.value, "View own investments", "Investment", "client", False),
        PermissionDefinition(P.INVESTMENTS_READ_ALL.value, "View all investments", "Investment", "advisor", True),
        PermissionDefinition(P.INVESTMENTS_RECOMMEND.value, "Recommend investments", "Investment", "advisor", True),
        PermissionDefinition(
            P.INVESTMENTS_MANAGE_PORTFOLIO.value, "Manage investment portfolios", "Investment", "advisor", True
        ),
        PermissionDefinition(P.FRAUD_ALERTS_READ.value, "View fraud alerts", "Fraud", "security", True),
        PermissionDefinition(
            P.FRAUD_TRANSACTIONS_REVIEW.value, "Review suspicious transactions", "Fraud", "security", True
        ),
        PermissionDefinition(P.FRAUD_RULES_MANAGE.value, "Manage fraud detection rules", "Fraud", "admin", True),
        PermissionDefinition(
            P.COMPLIANCE_REPORTS_GENERATE.value, "Generate compliance reports", "Compliance", "compliance", True
        ),
        PermissionDefinition(P.COMPLIANCE_AUDIT_READ.value, "View audit logs", "Compliance", "compliance", True),
        PermissionDefinition(P.USERS_READ_SELF.value, "View own profile", "User", "client", False),
        PermissionDefinition(P.USERS_READ_ALL.value, "View all user profiles", "User", "admin", True),
        PermissionDefinition(P.USERS_UPDATE_SELF.value, "Update own profile", "User", "client", False),
        PermissionDefinition(P.USERS_UPDATE_ALL.value, "Update any user profile", "User", "admin", True),
        PermissionDefinition(P.USERS_ROLES_MANAGE.value, "Manage user roles", "User", "admin", True),
    )

    ROLES: Tuple[RoleDefinition, ...] = (
        RoleDefinition(
            SystemRole.CLIENT.value, "Basic financial planning client", "Client", 10, _CLIENT_PERMISSIONS
        ),
        RoleDefinition(
            SystemRole.INVESTOR.value, "Investment account holder", "Client", 20, _CLIENT_PERMISSIONS
        ),
        RoleDefinition(
            SystemRole.PREMIUM_INVESTOR.value, "High-value premium investor", "Client", 30, _CLIENT_PERMISSIONS
        ),
        RoleDefinition(
            SystemRole.BUSINESS_INVESTOR.value, "Business/corporate investor", "Client", 40, _CLIENT_PERMISSIONS
        ),
        RoleDefinition(
            SystemRole.SUPPORT_AGENT.value, "Customer support agent", "Support", 50,
            frozenset({P.USERS_READ_ALL.value, P.USERS_UPDATE_ALL.value}),
        ),
        RoleDefinition(
            SystemRole.FINANCIAL_ADVISOR.value, "Registered financial advisor", "Advisor", 60,
            _ADVISOR_PERMISSIONS,
        ),
        RoleDefinition(
            SystemRole.WEALTH_MANAGER.value, "Portfolio and wealth manager", "Management", 70,
            _ADVISOR_PERMISSIONS | {P.ACCOUNTS_READ_ALL.value, P.TRANSACTIONS_READ_ALL.value},
        ),
        RoleDefinition(
            SystemRole.FRAUD_ANALYST.value, "Fraud detection and prevention specialist", "Security", 75,
            frozenset({
                P.FRAUD_ALERTS_READ.value,
                P.FRAUD_TRANSACTIONS_REVIEW.value,
                P.TRANSACTIONS_READ_ALL.value,
                P.ACCOUNTS_READ_ALL.value,
                P.USERS_READ_ALL.value,
            }),
        ),
        RoleDefinition(
            SystemRole.FINANCE_ADMIN.value, "Financial operations administrator", "Admin", 80,
            frozenset({
                P.ACCOUNTS_READ_ALL.value,
                P.ACCOUNTS_CREATE.value,
                P.ACCOUNTS_UPDATE_ALL.value,
                P.TRANSACTIONS_READ_ALL.value,
                P.TRANSACTIONS_REVERSE.value,
                P.USERS_READ_ALL.value,
                P.USERS_UPDATE_ALL.value,
                P.USERS_ROLES_MANAGE.value,
            }),
        ),
        RoleDefinition(
            SystemRole.COMPLIANCE_OFFICER.value, "Regulatory compliance officer", "Compliance", 90,
            frozenset({
                P.COMPLIANCE_REPORTS_GENERATE.value,
                P.COMPLIANCE_AUDIT_READ.value,
                P.TRANSACTIONS_READ_ALL.value,
                P.ACCOUNTS_READ_ALL.value,
                P.USERS_READ_ALL.value,
            }),
        ),
        RoleDefinition(
            SystemRole.SUPER_ADMIN.value, "System administrator with full access", "Admin", 100,
            frozenset(p.value for p in PermissionName),
            can_delegate=True,
        ),
    )

    # Which roles a holder of the key role may assign or revoke
    MANAGEMENT_RIGHTS: Dict[str, FrozenSet[str]] = {
        SystemRole.SUPER_ADMIN.value: frozenset({
            SystemRole.FINANCE_ADMIN.value,
            SystemRole.COMPLIANCE_OFFICER.value,
            SystemRole.WEALTH_MANAGER.value,
            SystemRole.FINANCIAL_ADVISOR.value,
            SystemRole.FRAUD_ANALYST.value,
            SystemRole.SUPPORT_AGENT.value,
        }),
        SystemRole.FINANCE_ADMIN.value: frozenset({
            SystemRole.WEALTH_MANAGER.value,
            SystemRole.FINANCIAL_ADVISOR.value,
            SystemRole.SUPPORT_AGENT.value,
        }),
        SystemRole.COMPLIANCE_OFFICER.value: frozenset({
            SystemRole.FRAUD_ANALYST.value,
            SystemRole.SUPPORT_AGENT.value,
        }),
        SystemRole.WEALTH_MANAGER.value: frozenset({
            SystemRole.FINANCIAL_ADVISOR.value,
        }),
        SystemRole.FINANCIAL_ADVISOR.value: frozenset({
            SystemRole.CLIENT.value,
            SystemRole.INVESTOR.value,
            SystemRole.PREMIUM_INVESTOR.value,
            SystemRole.BUSINESS_INVESTOR.value,
        }),
    }

    # Registration type -> role granted to the new account
    REGISTRATION_ROLES: Dict[str, str] = {
        "client": SystemRole.CLIENT.value,
        "investor": SystemRole.INVESTOR.value,
        "business": SystemRole.BUSINESS_INVESTOR.value,
    }

    @classmethod
    def role(cls, name: str) -> Optional[RoleDefinition]:
        return next((r for r in cls.ROLES if r.name == name), None)

    @classmethod
    def role_names(cls) -> List[str]:
        return [r.name for r in cls.ROLES]

    @classmethod
    def can_manage(cls, manager_role: str, target_role: str) -> bool:
        """True if ``manager_role`` may assign or revoke ``target_role``."""
        return target_role in cls.MANAGEMENT_RIGHTS.get(manager_role, frozenset())

    @classmethod
    def role_for_registration(cls, registration_type: str) -> str:
        return cls.REGISTRATION_ROLES.get(registration_type.lower(), DEFAULT_ROLE)


class AuthorizationResolver(LoggerMixin):
    """
    Resolves roles and permissions from an account's loaded assignments.

    Only active, started, unexpired assignments count. Methods never touch the
    database; callers load the account with its assignments first.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def active_assignments(
        self,
        account: Account,
        at: Optional[datetime] = None,
    ) -> List[RoleAssignment]:
        at = at or self._clock()
        return [
            assignment for assignment in account.role_assignments
            if assignment.role is not None and assignment.is_effective(at)
        ]

    def _active_roles(self, account: Account) -> List[Role]:
        return [assignment.role for assignment in self.active_assignments(account)]

    def role_names(self, account: Account) -> FrozenSet[str]:
        return frozenset(role.name for role in self._active_roles(account))

    def has_role(self, account: Account, role_name: str) -> bool:
        return role_name in self.role_names(account)

    def has_any_role(self, account: Account, *role_names: str) -> bool:
        names = self.role_names(account)
        return any(name in names for name in role_names)

    def has_all_roles(self, account: Account, *role_names: str) -> bool:
        names = self.role_names(account)
        return all(name in names for name in role_names)

    def primary_role(self, account: Account) -> str:
        """Highest-priority active role; equal priorities resolve by name."""
        roles = self._active_roles(account)
        if not roles:
            return DEFAULT_ROLE
        return min(roles, key=lambda role: (-role.priority, role.name)).name

    def effective_permissions(self, account: Account) -> FrozenSet[str]:
        permissions = set()
        for role in self._active_roles(account):
            permissions.update(role.permission_names)
        return frozenset(permissions)

    def has_permission(self, account: Account, permission: str) -> bool:
        return permission in self.effective_permissions(account)

    def in_category(self, account: Account, category: str) -> bool:
        return any(role.category == category for role in self._active_roles(account))

    def require_permission(self, account: Account, permission: str) -> None:
        if not self.has_permission(account, permission):
            self.logger.warning(f"Permission denied: {permission} for account {account.id}")
            raise AccessDeniedError(f"Permission denied: {permission}")

    def require_role(self, account: Account, *role_names: str) -> None:
        if not self.has_any_role(account, *role_names):
            self.logger.warning(f"Role check failed for account {account.id}: needs one of {role_names}")
            raise AccessDeniedError(f"Requires one of roles: {', '.join(role_names)}")


def seed_authorization_catalog(session: Session, seeded_by: str = "system:seed") -> Dict[str, int]:
    """
    Insert missing catalog roles, permissions and grants. Safe to re-run.
    """
    created = {"roles": 0, "permissions": 0, "grants": 0}

    permissions = {p.name: p for p in session.scalars(select(Permission))}
    for definition in RoleCatalog.PERMISSIONS:
        if definition.name in permissions:
            continue
        permission = Permission(
            name=definition.name,
            description=definition.description,
            category=definition.category,
            scope=definition.scope,
            is_sensitive=definition.is_sensitive,
        )
        session.add(permission)
        permissions[definition.name] = permission
        created["permissions"] += 1

    roles = {r.name: r for r in session.scalars(select(Role))}
    for definition in RoleCatalog.ROLES:
        role = roles.get(definition.name)
        if role is None:
            role = Role(
                name=definition.name,
                description=definition.description,
                category=definition.category,
                priority=definition.priority,
                is_system_role=definition.is_system_role,
                can_be_assigned=definition.can_be_assigned,
            )
            session.add(role)
            roles[definition.name] = role
            created["roles"] += 1

        granted = {grant.permission.name for grant in role.permission_grants}
        for permission_name in sorted(definition.permissions - granted):
            role.permission_grants.append(RolePermissionGrant(
                permission=permissions[permission_name],
                granted_by=seeded_by,
                can_delegate=definition.can_delegate,
            ))
            created["grants"] += 1

    session.flush()
    logger.info(
        f"Authorization catalog seeded: {created['roles']} roles, "
        f"{created['permissions']} permissions, {created['grants']} grants"
    )
    return created


def _find_role(session: Session, role_name: str) -> Role:
    role = session.scalar(select(Role).where(Role.name == role_name))
    if role is None:
        raise ValueError(f"Unknown role: {role_name}")
    return role


def assign_role(
    session: Session,
    account: Account,
    role_name: str,
    assigned_by: str = "system",
    expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> RoleAssignment:
    """Grant ``role_name`` to ``account``, reactivating a previous assignment."""
    role = _find_role(session, role_name)
    if not role.can_be_assigned:
        raise AccessDeniedError(f"Role {role_name} cannot be assigned")

    now = now or utcnow()
    for assignment in account.role_assignments:
        if assignment.role_id == role.id or assignment.role is role:
            assignment.is_active = True
            assignment.assigned_at = now
            assignment.assigned_by = assigned_by
            assignment.expires_at = expires_at
            return assignment

    assignment = RoleAssignment(
        role=role,
        assigned_at=now,
        assigned_by=assigned_by,
        expires_at=expires_at,
        is_active=True,
    )
    account.role_assignments.append(assignment)
    return assignment


def revoke_role(session: Session, account: Account, role_name: str) -> bool:
    """Deactivate the assignment; the row stays for the audit trail."""
    role = _find_role(session, role_name)
    for assignment in account.role_assignments:
        if assignment.role_id == role.id and assignment.is_active:
            assignment.is_active = False
            return True
    return False

