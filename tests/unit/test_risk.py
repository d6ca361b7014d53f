"""
Unit tests for the risk engine
"""
from contextlib import contextmanager
from decimal import Decimal

import pytest
from sqlalchemy import select

from finguard.core.exceptions import RiskPolicyError
from finguard.database.models import Account, KycStatus, RiskLevel
from finguard.security.risk import RISK_LIMITS, TransactionLimits


@pytest.fixture
def account(create_account, db):
    """Open a session around a persisted account so changes are committed."""

    @contextmanager
    def _open(email="alice@finguard.io", **kwargs):
        create_account(email, **kwargs)
        with db.session_scope() as session:
            yield session.scalars(select(Account).where(Account.email == email)).one()

    return _open


class TestRiskLimits:
    """Test cases for the risk limit table"""

    def test_table(self):
        assert RISK_LIMITS[RiskLevel.LOW] == TransactionLimits(Decimal("50000"), Decimal("250000"))
        assert RISK_LIMITS[RiskLevel.MEDIUM] == TransactionLimits(Decimal("10000"), Decimal("50000"))
        assert RISK_LIMITS[RiskLevel.HIGH] == TransactionLimits(Decimal("1000"), Decimal("5000"))
        assert RISK_LIMITS[RiskLevel.RESTRICTED] == TransactionLimits(Decimal("0"), Decimal("0"))

    def test_levels_are_ordered(self):
        assert RiskLevel.LOW < RiskLevel.MEDIUM < RiskLevel.HIGH < RiskLevel.RESTRICTED

    @pytest.mark.parametrize("text,level", [
        ("Low", RiskLevel.LOW),
        ("medium", RiskLevel.MEDIUM),
        (" HIGH ", RiskLevel.HIGH),
        ("Restricted", RiskLevel.RESTRICTED),
    ])
    def test_parse(self, text, level):
        assert RiskLevel.parse(text) is level
        assert RiskLevel.parse(level.label) is level

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            RiskLevel.parse("Severe")


class TestRiskEngine:
    """Test cases for RiskEngine"""

    def test_set_risk_level_applies_limits(self, risk_engine, account, clock):
        with account() as acct:
            risk_engine.set_risk_level(acct, RiskLevel.HIGH, "analyst@finguard.io", "Chargeback")

            assert acct.risk_level == RiskLevel.HIGH
            assert acct.daily_transaction_limit == Decimal("1000.00")
            assert acct.monthly_transaction_limit == Decimal("5000.00")
            assert acct.risk_assessed_by == "analyst@finguard.io"
            assert acct.risk_assessed_at == clock.utcnow()
            assert acct.risk_notes == "Chargeback"

    def test_set_risk_level_can_lower(self, risk_engine, account):
        with account(risk_level=RiskLevel.HIGH) as acct:
            risk_engine.set_risk_level(acct, "Low", "analyst")

            assert acct.risk_level == RiskLevel.LOW
            assert acct.daily_transaction_limit == Decimal("50000.00")

    def test_set_risk_level_rejects_unknown(self, risk_engine, account):
        with account() as acct:
            with pytest.raises(RiskPolicyError):
                risk_engine.set_risk_level(acct, "Severe", "analyst")
            assert acct.risk_level == RiskLevel.LOW

    def test_escalate_only_raises(self, risk_engine, account):
        with account(risk_level=RiskLevel.HIGH) as acct:
            assert not risk_engine.escalate(acct, RiskLevel.MEDIUM, "system")
            assert acct.risk_level == RiskLevel.HIGH

            assert risk_engine.escalate(acct, RiskLevel.RESTRICTED, "system", "Fraud confirmed")
            assert acct.risk_level == RiskLevel.RESTRICTED
            assert acct.daily_transaction_limit == Decimal("0.00")

    def test_flag_for_review(self, risk_engine, account, clock):
        with account() as acct:
            risk_engine.flag_for_review(acct, "Unusual withdrawal pattern", "monitor")

            assert acct.is_flagged_for_review
            assert acct.flag_reason == "Unusual withdrawal pattern"
            assert acct.flagged_by == "monitor"
            assert acct.flagged_at == clock.utcnow()
            assert acct.risk_level == RiskLevel.MEDIUM
            assert acct.risk_notes == "Flagged for review: Unusual withdrawal pattern"

    def test_flag_requires_reason(self, risk_engine, account):
        with account() as acct:
            with pytest.raises(RiskPolicyError):
                risk_engine.flag_for_review(acct, "   ", "monitor")
            assert not acct.is_flagged_for_review

    def test_clear_flag_keeps_risk(self, risk_engine, account):
        with account() as acct:
            risk_engine.flag_for_review(acct, "Sanctions hit", "monitor")
            risk_engine.clear_flag(acct, "compliance")

            assert not acct.is_flagged_for_review
            assert acct.flag_reason is None
            assert acct.risk_level == RiskLevel.MEDIUM

    def test_kyc_transitions(self, risk_engine, account, clock):
        with account() as acct:
            assert acct.kyc_status == KycStatus.PENDING

            risk_engine.reject_kyc(acct, "Document expired", "kyc-team")
            assert acct.kyc_status == KycStatus.REJECTED
            assert acct.risk_level == RiskLevel.HIGH
            assert acct.risk_notes == "KYC rejected: Document expired"

            risk_engine.approve_kyc(acct, "kyc-team")
            assert acct.kyc_status == KycStatus.VERIFIED
            assert acct.kyc_verified_at == clock.utcnow()
            assert acct.kyc_rejection_reason is None
            assert acct.risk_level == RiskLevel.HIGH

    def test_changes_persist(self, risk_engine, account, load_account):
        with account() as acct:
            risk_engine.flag_for_review(acct, "Velocity", "monitor")

        stored = load_account("alice@finguard.io")
        assert stored.is_flagged_for_review
        assert stored.risk_level == RiskLevel.MEDIUM
        assert stored.daily_transaction_limit == Decimal("10000.00")


class TestTransactionDecisions:
    """Test cases for transaction and authentication decisions"""

    def test_client_ceiling_caps_low_risk(self, risk_engine, create_account, load_account):
        create_account()
        acct = load_account("alice@finguard.io")

        assert risk_engine.effective_daily_limit(acct) == Decimal("10000.00")
        assert risk_engine.can_transact(acct, "10000")
        assert not risk_engine.can_transact(acct, Decimal("10000.01"))

    def test_investor_gets_full_risk_limit(self, risk_engine, create_account, load_account):
        create_account(roles=("Investor",))
        acct = load_account("alice@finguard.io")

        assert risk_engine.effective_daily_limit(acct) == Decimal("50000.00")
        assert risk_engine.can_transact(acct, 45000)

    def test_ceiling_does_not_raise_stricter_limit(self, risk_engine, create_account, load_account):
        create_account(risk_level=RiskLevel.HIGH)
        acct = load_account("alice@finguard.io")

        assert risk_engine.effective_daily_limit(acct) == Decimal("1000.00")
        assert not risk_engine.can_transact(acct, "1500")

    def test_restricted_and_flagged_cannot_transact(self, risk_engine, create_account, load_account):
        create_account("r@finguard.io", roles=("Investor",), risk_level=RiskLevel.RESTRICTED)
        create_account("f@finguard.io", roles=("Investor",), is_flagged_for_review=True)

        assert not risk_engine.can_transact(load_account("r@finguard.io"), "1")
        assert not risk_engine.can_transact(load_account("f@finguard.io"), "1")
        assert not risk_engine.can_authenticate(load_account("r@finguard.io"))
        assert risk_engine.can_authenticate(load_account("f@finguard.io"))

    @pytest.mark.parametrize("amount", ["abc", "NaN", "Infinity"])
    def test_invalid_amounts_rejected(self, risk_engine, create_account, load_account, amount):
        create_account()
        with pytest.raises(RiskPolicyError):
            risk_engine.can_transact(load_account("alice@finguard.io"), amount)

    @pytest.mark.parametrize("amount", [0, "0.00", "-5", Decimal("-0.01")])
    def test_non_positive_amounts_are_not_admitted(self, risk_engine, create_account, load_account, amount):
        create_account("i@finguard.io", roles=("Investor",))
        create_account("r@finguard.io", roles=("Investor",), risk_level=RiskLevel.RESTRICTED)

        assert risk_engine.can_transact(load_account("i@finguard.io"), amount) is False
        assert risk_engine.can_transact(load_account("r@finguard.io"), amount) is False

    def test_can_transact_is_monotonic(self, risk_engine, create_account, load_account):
        create_account(roles=("Investor",), risk_level=RiskLevel.MEDIUM)
        acct = load_account("alice@finguard.io")

        amounts = [Decimal("0.01"), Decimal("1"), Decimal("9999.99"), Decimal("10000"), Decimal("10000.01")]
        decisions = [risk_engine.can_transact(acct, amount) for amount in amounts]
        assert decisions == [True, True, True, True, False]
