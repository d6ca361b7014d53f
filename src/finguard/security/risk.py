"""
FinGuard Risk Engine
Risk classification, KYC state and transaction limits

Limits are derived from the risk level through ``RISK_LIMITS`` only.
Automated paths (lockout, flagging, KYC rejection) call ``escalate`` and can
never lower an account's risk; lowering requires ``set_risk_level``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional, Union

from finguard.core.config import Settings, settings as default_settings
from finguard.core.exceptions import RiskPolicyError
from finguard.core.logging import LoggerMixin
from finguard.database.models import Account, KycStatus, RiskLevel
from finguard.database.types import utcnow
from .rbac import AuthorizationResolver, SystemRole


@dataclass(frozen=True)
class TransactionLimits:
    daily: Decimal
    monthly: Decimal


RISK_LIMITS: Dict[RiskLevel, TransactionLimits] = {
    RiskLevel.LOW: TransactionLimits(Decimal("50000.00"), Decimal("250000.00")),
    RiskLevel.MEDIUM: TransactionLimits(Decimal("10000.00"), Decimal("50000.00")),
    RiskLevel.HIGH: TransactionLimits(Decimal("1000.00"), Decimal("5000.00")),
    RiskLevel.RESTRICTED: TransactionLimits(Decimal("0.00"), Decimal("0.00")),
}

LOCKOUT_RISK_NOTE = "Multiple failed login attempts"


class RiskEngine(LoggerMixin):
    """
    Applies risk policy to Account objects.

    Methods mutate the account in place; the caller owns the session and
    commits the change.
    """

    def __init__(
        self,
        resolver: Optional[AuthorizationResolver] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        config = config or default_settings
        self.resolver = resolver or AuthorizationResolver(clock=clock)
        self._clock = clock
        # Absolute daily caps by primary role, applied on top of the risk limit
        self.role_ceilings: Dict[str, Decimal] = {
            SystemRole.CLIENT.value: config.CLIENT_ROLE_DAILY_CEILING,
        }

    @staticmethod
    def limits_for(level: RiskLevel) -> TransactionLimits:
        return RISK_LIMITS[level]

    def _apply_limits(self, account: Account) -> None:
        limits = RISK_LIMITS[account.risk_level]
        account.daily_transaction_limit = limits.daily
        account.monthly_transaction_limit = limits.monthly

    def set_risk_level(
        self,
        account: Account,
        level: Union[RiskLevel, str],
        assessed_by: str,
        notes: Optional[str] = None,
    ) -> None:
        """Set the risk level explicitly, in either direction."""
        if isinstance(level, str):
            try:
                level = RiskLevel.parse(level)
            except ValueError as e:
                raise RiskPolicyError(str(e)) from e

        previous = account.risk_level
        account.risk_level = level
        account.risk_assessed_at = self._clock()
        account.risk_assessed_by = assessed_by
        account.risk_notes = notes
        account.updated_by = assessed_by
        self._apply_limits(account)

        if previous is not None and previous != level:
            self.logger.info(
                f"Risk level for account {account.id} changed "
                f"{previous.label} -> {level.label} by {assessed_by}"
            )

    def escalate(
        self,
        account: Account,
        minimum: RiskLevel,
        assessed_by: str,
        notes: Optional[str] = None,
    ) -> bool:
        """Raise risk to ``minimum`` if it is currently lower. Returns True on change."""
        current = account.risk_level if account.risk_level is not None else RiskLevel.LOW
        if current >= minimum:
            return False
        self.set_risk_level(account, minimum, assessed_by, notes)
        return True

    def flag_for_review(self, account: Account, reason: str, flagged_by: str) -> None:
        if not reason or not reason.strip():
            raise RiskPolicyError("A reason is required to flag an account")

        account.is_flagged_for_review = True
        account.flag_reason = reason
        account.flagged_at = self._clock()
        account.flagged_by = flagged_by
        account.updated_by = flagged_by
        self.escalate(account, RiskLevel.MEDIUM, flagged_by, f"Flagged for review: {reason}")
        self.logger.warning(f"Account {account.id} flagged for review by {flagged_by}")

    def clear_flag(self, account: Account, cleared_by: str) -> None:
        """Clear the review flag. Risk level is left untouched."""
        account.is_flagged_for_review = False
        account.flag_reason = None
        account.flagged_at = None
        account.flagged_by = None
        account.updated_by = cleared_by

    def approve_kyc(self, account: Account, verified_by: str) -> None:
        account.kyc_status = KycStatus.VERIFIED
        account.kyc_verified_at = self._clock()
        account.kyc_verified_by = verified_by
        account.kyc_rejection_reason = None
        account.updated_by = verified_by

    def reject_kyc(self, account: Account, reason: str, rejected_by: str) -> None:
        account.kyc_status = KycStatus.REJECTED
        account.kyc_rejection_reason = reason
        account.updated_by = rejected_by
        self.escalate(account, RiskLevel.HIGH, rejected_by, f"KYC rejected: {reason}")

    def effective_daily_limit(self, account: Account) -> Decimal:
        """Stricter of the risk limit and the primary role's ceiling."""
        limit = RISK_LIMITS[account.risk_level].daily
        ceiling = self.role_ceilings.get(self.resolver.primary_role(account))
        if ceiling is not None and ceiling < limit:
            return ceiling
        return limit

    def can_transact(self, account: Account, amount: Union[Decimal, int, str]) -> bool:
        """
        Whether ``amount`` fits the account's effective daily limit.

        Zero and negative amounts are never admitted. Only unparsable or
        non-finite input raises ``RiskPolicyError``.
        """
        try:
            amount = Decimal(str(amount))
        except InvalidOperation as e:
            raise RiskPolicyError(f"Invalid amount: {amount!r}") from e
        if not amount.is_finite():
            raise RiskPolicyError(f"Amount must be finite: {amount}")
        if amount <= 0:
            return False

        if account.risk_level == RiskLevel.RESTRICTED:
            return False
        if account.is_flagged_for_review:
            return False
        return amount <= self.effective_daily_limit(account)

    def can_authenticate(self, account: Account) -> bool:
        return account.risk_level != RiskLevel.RESTRICTED
