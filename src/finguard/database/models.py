"""
FinGuard Database Models
SQLAlchemy 2.0+ models for accounts, roles and permissions
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Enum as SQLEnum, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from finguard.database.types import UTCDateTime, utcnow


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


class AttributionMixin:
    """Who created and last touched a row"""
    created_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), default="system")


class RiskLevel(IntEnum):
    """Risk classification, ordered from least to most restrictive"""
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    RESTRICTED = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: str) -> "RiskLevel":
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown risk level: {value}") from None


class KycStatus(str, Enum):
    """Know-your-customer verification state"""
    PENDING = "Pending"
    VERIFIED = "Verified"
    REJECTED = "Rejected"
    UNDER_REVIEW = "UnderReview"


class Account(Base, TimestampMixin, AttributionMixin):
    """Account holder with login security and risk state"""
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Login security
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    last_login_ip: Mapped[Optional[str]] = mapped_column(String(45))
    last_login_user_agent: Mapped[Optional[str]] = mapped_column(String(500))

    # KYC
    kyc_status: Mapped[KycStatus] = mapped_column(
        SQLEnum(KycStatus), default=KycStatus.PENDING, nullable=False
    )
    kyc_verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    kyc_verified_by: Mapped[Optional[str]] = mapped_column(String(100))
    kyc_rejection_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Risk
    risk_level: Mapped[RiskLevel] = mapped_column(
        SQLEnum(RiskLevel), default=RiskLevel.LOW, nullable=False
    )
    risk_assessed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    risk_assessed_by: Mapped[Optional[str]] = mapped_column(String(100))
    risk_notes: Mapped[Optional[str]] = mapped_column(Text)
    daily_transaction_limit: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("50000.00"), nullable=False
    )
    monthly_transaction_limit: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("250000.00"), nullable=False
    )

    # Review flag
    is_flagged_for_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    flagged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    flag_reason: Mapped[Optional[str]] = mapped_column(Text)
    flagged_by: Mapped[Optional[str]] = mapped_column(String(100))

    role_assignments: Mapped[List["RoleAssignment"]] = relationship(
        "RoleAssignment",
        back_populates="account",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_accounts_risk_level", "risk_level"),
        Index("ix_accounts_flagged_for_review", "is_flagged_for_review"),
        Index("ix_accounts_is_active", "is_active"),
    )

    def is_locked_out(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.locked_until is not None and self.locked_until > now

    def __repr__(self) -> str:
        return f"<Account {self.email} risk={self.risk_level.label}>"


class Role(Base):
    """Named role with a privilege priority"""
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(255), default="")
    category: Mapped[str] = mapped_column(String(50), default="General", nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_be_assigned: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    permission_grants: Mapped[List["RolePermissionGrant"]] = relationship(
        "RolePermissionGrant",
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_roles_category", "category"),
        Index("ix_roles_priority", "priority"),
    )

    @property
    def permission_names(self) -> frozenset:
        return frozenset(grant.permission.name for grant in self.permission_grants)

    def __repr__(self) -> str:
        return f"<Role {self.name} priority={self.priority}>"


class Permission(Base):
    """Named capability that roles can be granted"""
    __tablename__ = "permissions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(255), default="")
    category: Mapped[str] = mapped_column(String(50), default="")
    scope: Mapped[str] = mapped_column(String(20), default="system")
    is_sensitive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class RoleAssignment(Base):
    """Membership of an account in a role"""
    __tablename__ = "role_assignments"

    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    assigned_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    account: Mapped["Account"] = relationship("Account", back_populates="role_assignments")
    role: Mapped["Role"] = relationship("Role", lazy="selectin")

    __table_args__ = (
        Index("ix_role_assignments_account_id", "account_id"),
        Index("ix_role_assignments_is_active", "is_active"),
    )

    def is_effective(self, at: Optional[datetime] = None) -> bool:
        """Active, already started and not yet expired."""
        at = at or utcnow()
        if not self.is_active:
            return False
        if self.assigned_at is not None and self.assigned_at > at:
            return False
        return self.expires_at is None or at < self.expires_at


class RolePermissionGrant(Base):
    """Permission granted to a role"""
    __tablename__ = "role_permissions"

    role_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    permission_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
    )
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    granted_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)
    can_delegate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    role: Mapped["Role"] = relationship("Role", back_populates="permission_grants")
    permission: Mapped["Permission"] = relationship("Permission", lazy="selectin")
