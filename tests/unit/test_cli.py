"""
Unit tests for the operator CLI
"""
import pytest
from typer.testing import CliRunner

from finguard import __version__
from finguard.cli.main import app
from finguard.database.models import RiskLevel

runner = CliRunner()


@pytest.fixture
def invoke(tmp_path, db):
    """Run a CLI command against the test database file."""
    url = f"sqlite:///{tmp_path / 'finguard.db'}"

    def _invoke(*args):
        return runner.invoke(app, ["--database-url", url, *args])

    return _invoke


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_init_db_on_seeded_database_creates_nothing(invoke):
    result = invoke("init-db")

    assert result.exit_code == 0
    assert "Roles created: 0" in result.stdout


def test_init_db_fresh(tmp_path):
    result = runner.invoke(app, ["--database-url", f"sqlite:///{tmp_path / 'new.db'}", "init-db"])

    assert result.exit_code == 0
    assert "Roles created: 11" in result.stdout
    assert "Permissions created: 23" in result.stdout


def test_status(invoke, create_account):
    create_account(roles=("Investor",))

    result = invoke("status", "alice@finguard.io")

    assert result.exit_code == 0
    assert "Investor" in result.stdout
    assert "investments:read:self" in result.stdout


def test_unknown_account(invoke):
    result = invoke("status", "ghost@finguard.io")

    assert result.exit_code == 1
    assert "No account found" in result.stdout


def test_unlock(invoke, create_account, load_account, guard):
    create_account()
    for i in range(5):
        guard.record_failure("alice@finguard.io", f"192.0.2.{i}")

    result = invoke("unlock", "Alice@FinGuard.io")

    assert result.exit_code == 0
    assert "Stored lockout cleared" in result.stdout
    assert "memory" in result.stdout
    account = load_account("alice@finguard.io")
    assert account.failed_login_attempts == 0
    assert account.locked_until is None


def test_unlock_unknown_account(invoke):
    result = invoke("unlock", "ghost@finguard.io")

    assert result.exit_code == 1
    assert "No account found" in result.stdout


def test_status_lists_recent_logins(invoke, create_account, auth_manager):
    create_account()
    assert auth_manager.login({"email": "alice@finguard.io", "password": "Sunrise!Harbor42"}, "192.0.2.44").success

    result = invoke("status", "alice@finguard.io")

    assert result.exit_code == 0
    assert "Recent logins" in result.stdout
    assert "192.0.2.44" in result.stdout


def test_set_risk(invoke, create_account, load_account):
    create_account()

    result = invoke("set-risk", "alice@finguard.io", "high", "--by", "analyst", "--notes", "Chargebacks")

    assert result.exit_code == 0
    account = load_account("alice@finguard.io")
    assert account.risk_level == RiskLevel.HIGH
    assert account.daily_transaction_limit == 1000
    assert account.risk_assessed_by == "analyst"
    assert account.risk_notes == "Chargebacks"


def test_set_risk_rejects_unknown_level(invoke, create_account, load_account):
    create_account()

    result = invoke("set-risk", "alice@finguard.io", "severe")

    assert result.exit_code == 2
    assert load_account("alice@finguard.io").risk_level == RiskLevel.LOW


def test_flag_and_clear(invoke, create_account, load_account):
    create_account()

    result = invoke("flag", "alice@finguard.io", "Unusual withdrawals", "--by", "monitor")
    assert result.exit_code == 0
    account = load_account("alice@finguard.io")
    assert account.is_flagged_for_review
    assert account.risk_level == RiskLevel.MEDIUM

    result = invoke("clear-flag", "alice@finguard.io")
    assert result.exit_code == 0
    account = load_account("alice@finguard.io")
    assert not account.is_flagged_for_review
    assert account.risk_level == RiskLevel.MEDIUM


def test_flag_requires_reason(invoke, create_account, load_account):
    create_account()

    result = invoke("flag", "alice@finguard.io", " ")

    assert result.exit_code == 1
    assert not load_account("alice@finguard.io").is_flagged_for_review


def test_assign_and_revoke_role(invoke, create_account, load_account):
    create_account()

    result = invoke("assign-role", "alice@finguard.io", "PremiumInvestor", "--expires-in-days", "30")
    assert result.exit_code == 0
    assignments = {a.role.name: a for a in load_account("alice@finguard.io").role_assignments}
    assert assignments["PremiumInvestor"].expires_at is not None

    result = invoke("revoke-role", "alice@finguard.io", "PremiumInvestor")
    assert result.exit_code == 0
    assignments = {a.role.name: a for a in load_account("alice@finguard.io").role_assignments}
    assert not assignments["PremiumInvestor"].is_active

    result = invoke("revoke-role", "alice@finguard.io", "PremiumInvestor")
    assert result.exit_code == 1


def test_assign_unknown_role(invoke, create_account):
    create_account()

    result = invoke("assign-role", "alice@finguard.io", "Janitor")

    assert result.exit_code == 1
    assert "Unknown role" in result.stdout
