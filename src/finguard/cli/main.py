"""
FinGuard CLI Main Entry Point
Operator commands for schema setup, account inspection and risk/role changes
"""

from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Optional, Tuple

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import select
from sqlalchemy.orm import Session

from finguard import __version__
from finguard.core.config import settings
from finguard.core.counter_store import create_counter_store
from finguard.core.exceptions import AccessDeniedError, RiskPolicyError
from finguard.core.logging import get_logger
from finguard.database.models import Account, RiskLevel
from finguard.database.session import DatabaseManager
from finguard.database.types import utcnow
from finguard.security.audit import AuditLogger
from finguard.security.brute_force import BruteForceGuard, normalize_identity
from finguard.security.rbac import AuthorizationResolver, assign_role, revoke_role, seed_authorization_catalog
from finguard.security.risk import RiskEngine

logger = get_logger(__name__)
console = Console()

app = typer.Typer(
    name="finguard",
    help="FinGuard - Adaptive Authentication Security Engine CLI",
    rich_markup_mode="rich",
    no_args_is_help=True,
)


def _db(ctx: typer.Context) -> DatabaseManager:
    if ctx.obj.get("db") is None:
        ctx.obj["db"] = DatabaseManager(ctx.obj.get("database_url"))
    return ctx.obj["db"]


@contextmanager
def _account_scope(ctx: typer.Context, email: str) -> Iterator[Tuple[Session, Account]]:
    with _db(ctx).session_scope() as session:
        account = session.scalars(
            select(Account).where(Account.email == normalize_identity(email))
        ).one_or_none()
        if account is None:
            console.print(f"[bold red]✗[/bold red] No account found for {email}")
            raise typer.Exit(code=1)
        yield session, account


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit"
    ),
    database_url: Optional[str] = typer.Option(
        None,
        "--database-url",
        envvar="FINGUARD_DATABASE_URL",
        help="Database URL (defaults to the configured DATABASE_URL)"
    ),
) -> None:
    """
    FinGuard - brute-force lockout, rate limiting, risk limits and roles
    """
    if version:
        console.print(f"[bold blue]FinGuard[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()

    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url or settings.DATABASE_URL


@app.command("init-db")
def init_db(ctx: typer.Context) -> None:
    """
    Create tables and seed the system roles and permissions
    """
    db = _db(ctx)
    db.create_all()
    with db.session_scope() as session:
        created = seed_authorization_catalog(session)

    console.print(Panel(
        f"[bold green]✓[/bold green] Schema ready\n"
        f"Roles created: {created['roles']}\n"
        f"Permissions created: {created['permissions']}\n"
        f"Grants created: {created['grants']}",
        title="[bold blue]Database Initialized[/bold blue]",
        border_style="green"
    ))


@app.command()
def status(ctx: typer.Context, email: str = typer.Argument(..., help="Account email")) -> None:
    """
    Show risk, limits, lockout state, roles and permissions for an account
    """
    resolver = AuthorizationResolver()
    engine = RiskEngine(resolver)
    audit = AuditLogger(_db(ctx))

    with _account_scope(ctx, email) as (_, account):
        locked = account.is_locked_out()
        logins = audit.logins_for(account.id, limit=5)

        table = Table(title=f"Account {account.email}", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("ID", str(account.id))
        table.add_row("Active", "yes" if account.is_active else "[red]no[/red]")
        table.add_row("Email verified", "yes" if account.email_verified else "no")
        table.add_row("KYC", account.kyc_status.value)
        table.add_row("Risk level", account.risk_level.label)
        table.add_row("Risk notes", account.risk_notes or "-")
        table.add_row("Daily limit", f"{account.daily_transaction_limit:,.2f}")
        table.add_row("Monthly limit", f"{account.monthly_transaction_limit:,.2f}")
        table.add_row("Effective daily limit", f"{engine.effective_daily_limit(account):,.2f}")
        table.add_row("Flagged", account.flag_reason if account.is_flagged_for_review else "no")
        table.add_row("Failed attempts", str(account.failed_login_attempts))
        table.add_row(
            "Locked until",
            f"[red]{account.locked_until.isoformat()}[/red]" if locked else "-"
        )
        table.add_row("Primary role", resolver.primary_role(account))
        table.add_row("Roles", ", ".join(sorted(resolver.role_names(account))) or "-")
        table.add_row("Permissions", "\n".join(sorted(resolver.effective_permissions(account))) or "-")
        table.add_row(
            "Recent logins",
            "\n".join(f"{log.created_at.isoformat()} from {log.ip_address}" for log in logins) or "-"
        )
        console.print(table)


@app.command()
def unlock(ctx: typer.Context, email: str = typer.Argument(..., help="Account email")) -> None:
    """
    Clear failed attempts and lockout for an account
    """
    db = _db(ctx)
    with db.session_scope() as session:
        exists = session.scalar(select(Account.id).where(Account.email == normalize_identity(email)))
    if exists is None:
        console.print(f"[bold red]✗[/bold red] No account found for {email}")
        raise typer.Exit(code=1)

    guard = BruteForceGuard(create_counter_store(settings), db, audit=AuditLogger(db))
    guard.reset(email)

    if settings.COUNTER_STORE_BACKEND == "redis":
        console.print(f"[bold green]✓[/bold green] {email} unlocked")
    else:
        console.print(
            f"[bold green]✓[/bold green] Stored lockout cleared for {email}\n"
            "[yellow]Counter store backend is 'memory': live counters belong to the "
            "serving process and were not touched[/yellow]"
        )


@app.command("set-risk")
def set_risk(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    level: str = typer.Argument(..., help="Low, Medium, High or Restricted"),
    assessed_by: str = typer.Option("cli", "--by", help="Who assessed the risk"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Assessment notes"),
) -> None:
    """
    Set an account's risk level and the matching limits
    """
    try:
        risk_level = RiskLevel.parse(level)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="LEVEL") from e

    with _account_scope(ctx, email) as (_, account):
        RiskEngine().set_risk_level(account, risk_level, assessed_by, notes)
        daily = account.daily_transaction_limit

    console.print(
        f"[bold green]✓[/bold green] {email} risk set to {risk_level.label} "
        f"(daily limit {daily:,.2f})"
    )


@app.command()
def flag(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    reason: str = typer.Argument(..., help="Why the account needs review"),
    flagged_by: str = typer.Option("cli", "--by", help="Who flagged the account"),
) -> None:
    """
    Flag an account for review (raises risk to at least Medium)
    """
    try:
        with _account_scope(ctx, email) as (_, account):
            RiskEngine().flag_for_review(account, reason, flagged_by)
            level = account.risk_level
    except RiskPolicyError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[bold yellow]⚑[/bold yellow] {email} flagged for review (risk {level.label})")


@app.command("clear-flag")
def clear_flag(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    cleared_by: str = typer.Option("cli", "--by", help="Who cleared the flag"),
) -> None:
    """
    Clear the review flag; the risk level is unchanged
    """
    with _account_scope(ctx, email) as (_, account):
        RiskEngine().clear_flag(account, cleared_by)
    console.print(f"[bold green]✓[/bold green] Review flag cleared for {email}")


@app.command("assign-role")
def assign_role_command(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    role: str = typer.Argument(..., help="Role name"),
    assigned_by: str = typer.Option("cli", "--by", help="Who assigned the role"),
    expires_in_days: Optional[int] = typer.Option(
        None, "--expires-in-days", min=1, help="Expire the assignment after N days"
    ),
) -> None:
    """
    Assign a role to an account
    """
    expires_at = utcnow() + timedelta(days=expires_in_days) if expires_in_days else None
    try:
        with _account_scope(ctx, email) as (session, account):
            assign_role(session, account, role, assigned_by=assigned_by, expires_at=expires_at)
    except (ValueError, AccessDeniedError) as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[bold green]✓[/bold green] {role} assigned to {email}")


@app.command("revoke-role")
def revoke_role_command(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    role: str = typer.Argument(..., help="Role name"),
) -> None:
    """
    Deactivate a role assignment (kept for the audit trail)
    """
    try:
        with _account_scope(ctx, email) as (session, account):
            revoked = revoke_role(session, account, role)
    except ValueError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)

    if not revoked:
        console.print(f"[yellow]{email} has no active {role} assignment[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓[/bold green] {role} revoked from {email}")


if __name__ == "__main__":
    app()
