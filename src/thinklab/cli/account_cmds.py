"""Account commands: create, grant, balance, history, deactivate."""

from typing import Optional

import typer
from rich.table import Table

from . import account_app, console
from ..daemon.errors import LedgerError
from ..daemon.ledger import store
from ..daemon.utils.config_loader import config_loader


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


@account_app.command("create")
def create_account(
    account_id: str,
    balance: Optional[int] = typer.Option(None, "--balance", "-b", help="Starting credits (defaults to ledger.default_starting_balance)"),
):
    """Provision an account with its starting credits."""
    if balance is None:
        balance = config_loader.ledger_settings().default_starting_balance
    try:
        account, created = store.provision_account(account_id, starting_balance=balance)
    except (LedgerError, ValueError) as e:
        _fail(f"Error: {e}")

    if created:
        console.print(f"[green]Account '{account.account_id}' created with {account.balance} credits.[/green]")
    else:
        console.print(f"[yellow]Account '{account.account_id}' already exists ({account.balance} credits).[/yellow]")


@account_app.command("grant")
def grant(
    account_id: str,
    amount: int,
    reason: str = typer.Option("operator grant", "--reason", "-r", help="Recorded with the grant"),
):
    """Add credits to an account."""
    try:
        new_balance = store.grant_credits(account_id, amount, reason=reason)
    except (LedgerError, ValueError) as e:
        _fail(f"Error: {e}")
    console.print(f"[green]Granted {amount} credits to '{account_id}'. Balance: {new_balance}[/green]")


@account_app.command("balance")
def balance(account_id: str):
    """Show an account's current balance."""
    account = store.get_account(account_id)
    if account is None:
        _fail(f"Account '{account_id}' not found")
    state = "active" if account.active else "[red]deactivated[/red]"
    console.print(f"[bold]{account.account_id}[/bold]: {account.balance} credits ({state})")


@account_app.command("history")
def history(
    account_id: str,
    limit: int = typer.Option(20, "--limit", "-n", help="Records per page"),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Continue from a previous page"),
):
    """List an account's action records, newest first."""
    try:
        page = store.history(account_id, limit=limit, cursor=cursor)
    except (LedgerError, ValueError) as e:
        _fail(f"Error: {e}")

    table = Table(title=f"History for {account_id}")
    table.add_column("Created")
    table.add_column("Action")
    table.add_column("Cost", justify="right")
    table.add_column("Status")
    table.add_column("Record ID")
    table.add_column("Error")

    colors = {"COMMITTED": "green", "REFUNDED": "yellow", "FAILED": "red", "RESERVED": "cyan"}
    for record in page.records:
        color = colors.get(str(record.status), "white")
        table.add_row(
            record.created_at,
            record.action_kind,
            str(record.cost),
            f"[{color}]{record.status}[/{color}]",
            record.record_id,
            record.error or "",
        )
    console.print(table)
    if page.next_cursor:
        console.print(f"More: --cursor {page.next_cursor}")


@account_app.command("deactivate")
def deactivate(account_id: str):
    """Block new reservations for an account. Balance and history are kept."""
    try:
        store.deactivate_account(account_id)
    except LedgerError as e:
        _fail(f"Error: {e}")
    console.print(f"[green]Account '{account_id}' deactivated.[/green]")
