"""Operational commands: reconcile, doctor, pricing, analytics, version."""

import os
from typing import Optional

import typer
from rich.table import Table

from .. import __version__
from . import app, console, THINKLAB_DIR, get_daemon_pid


# ── Reconcile ───────────────────────────────────────────────────────────────

@app.command("reconcile")
def reconcile(
    stale_after: Optional[int] = typer.Option(None, "--stale-after", help="Seconds before an unresolved record is stale"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="Failed refunds before escalation"),
    include_escalated: bool = typer.Option(False, "--include-escalated", help="Retry records already escalated"),
):
    """Refund stale reservations left behind by crashes."""
    from ..daemon.runtime import reconcile_stale_reservations

    try:
        summary = reconcile_stale_reservations(
            stale_after_seconds=stale_after,
            max_attempts=max_attempts,
            include_escalated=include_escalated,
        )
    except Exception as e:
        console.print(f"[red]Reconciliation failed: {e}[/red]")
        raise typer.Exit(1)

    console.print("[bold]Reconciliation sweep[/bold]")
    console.print(f"  Scanned:   {summary['scanned']}")
    console.print(f"  Refunded:  {summary['refunded']}")
    console.print(f"  Skipped:   {summary['skipped']}")
    console.print(f"  Errors:    {summary['errors']}")
    if summary["escalated"]:
        console.print(f"[red]  Needs manual reconciliation: {', '.join(summary['escalated'])}[/red]")
        raise typer.Exit(2)


# ── Pricing ─────────────────────────────────────────────────────────────────

@app.command("pricing")
def show_pricing():
    """Show credits charged per action kind."""
    from ..daemon.utils.config_loader import config_loader

    table = Table(title="Action Pricing")
    table.add_column("Action")
    table.add_column("Credits", justify="right")
    for kind, cost in config_loader.pricing_table().as_dict().items():
        table.add_row(kind, str(cost))
    console.print(table)


# ── Analytics ───────────────────────────────────────────────────────────────

@app.command("analytics")
def show_analytics(account_id: Optional[str] = typer.Option(None, "--account", "-a", help="Limit to one account")):
    """Usage analytics from the ledger."""
    from ..daemon.utils.metrics import usage_analytics

    data = usage_analytics(account_id)
    console.print("[bold]ThinkLab Usage[/bold]")
    console.print(f"  Accounts:          {data['total_accounts']} ({data['active_accounts']} active)")
    console.print(f"  Balance held:      {data['total_balance']}")
    console.print(f"  Credits granted:   {data['total_granted']}")
    console.print(f"  API calls:         {data['api_calls']}")
    console.print(f"  Credits consumed:  {data['credits_consumed']}")
    console.print(f"  Credits refunded:  {data['credits_refunded']}")
    console.print(f"  In flight:         {data['credits_in_flight']}")
    console.print(f"  Stale records:     {data['stale_reservations']}")

    if data["by_action_kind"]:
        table = Table(title="By Action")
        table.add_column("Action")
        table.add_column("Calls", justify="right")
        table.add_column("Credits", justify="right")
        table.add_column("Refunded", justify="right")
        for kind, row in sorted(data["by_action_kind"].items()):
            table.add_row(kind, str(row["api_calls"]), str(row["credits_consumed"]), str(row["refunded"]))
        console.print(table)


# ── Version ─────────────────────────────────────────────────────────────────

@app.command("version")
def show_version():
    """Show ThinkLab version."""
    console.print(f"ThinkLab v{__version__}")


# ── Doctor ──────────────────────────────────────────────────────────────────

@app.command("doctor")
def doctor():
    """Check ThinkLab environment health."""
    from ..daemon.db import check_db_integrity, describe_db, get_backend, get_db_path
    from ..daemon.utils.config_loader import config_loader

    console.print(f"[bold]ThinkLab Doctor v{__version__}[/bold]")
    console.print()

    all_ok = True

    # 1. Runtime directory
    if THINKLAB_DIR.exists():
        console.print(f"  ✅ Runtime dir:    {THINKLAB_DIR}")
    else:
        console.print("  ⚠️  Runtime dir:    NOT FOUND (run: thinklab init)")

    # 2. Database
    if get_backend() == "sqlite" and not os.path.exists(get_db_path()):
        console.print(f"  ❌ Database:       NOT FOUND at {get_db_path()} (run: thinklab init)")
        all_ok = False
    else:
        console.print(f"  ✅ Database:       {describe_db()}")
        try:
            if check_db_integrity():
                console.print("  ✅ DB Integrity:   PASS")
            else:
                console.print("  ❌ DB Integrity:   FAIL (run: thinklab reconcile)")
                all_ok = False
        except Exception as e:
            console.print(f"  ❌ DB Integrity:   ERROR ({e})")
            all_ok = False

    # 3. Config
    try:
        config = config_loader.load_config()
        source = config_loader.config_file if config_loader.config_file.exists() else "built-in defaults"
        console.print(f"  ✅ Config:         {source} ({len(config.pricing)} action kinds)")
        api_key_env = config.provider.api_key_env
        if os.getenv(api_key_env):
            console.print(f"  ✅ Provider key:   {api_key_env} set")
        else:
            console.print(f"  ⚠️  Provider key:   {api_key_env} not set")
    except Exception as e:
        console.print(f"  ❌ Config:         ERROR ({e})")
        all_ok = False

    # 4. Daemon
    pid = get_daemon_pid()
    if pid:
        try:
            os.kill(pid, 0)
            console.print(f"  ✅ Daemon:         running (PID {pid})")
        except ProcessLookupError:
            console.print("  ⚠️  Daemon:         stale PID file")
    else:
        console.print("  ⚠️  Daemon:         not running")

    console.print()
    if all_ok:
        console.print("[green]All checks passed.[/green]")
    else:
        console.print("[red]Some checks failed.[/red]")
        raise typer.Exit(1)
