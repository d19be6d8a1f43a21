"""ThinkLab CLI: modular command package."""

import typer
from pathlib import Path
from rich.console import Console

from ..daemon.db import describe_db, init_db

# ── Shared state ────────────────────────────────────────────────────────────

app = typer.Typer(help="ThinkLab - credit-metered AI actions")
console = Console()

# Sub-command groups
daemon_app = typer.Typer()
account_app = typer.Typer()

app.add_typer(daemon_app, name="daemon", help="Manage the ThinkLab daemon process")
app.add_typer(account_app, name="account", help="Manage credit accounts")

# ── Path constants ──────────────────────────────────────────────────────────

THINKLAB_DIR = Path.home() / ".thinklab"
PID_FILE = THINKLAB_DIR / "thinklab.pid"
LOG_DIR = THINKLAB_DIR / "logs"
CONFIG_DIR = THINKLAB_DIR / "config"
CONFIG_FILE = CONFIG_DIR / "thinklab.yaml"

DEFAULT_CONFIG_YAML = """version: 1

# Credits charged per successful action.
pricing:
  text-generation: 5
  image-generation: 10
  code-generation: 8
  data-analysis: 15
  text-summarization: 3
  seo-optimization: 12

provider:
  base_url: https://api.openai.com/v1
  api_key_env: OPENAI_API_KEY
  text_model: gpt-4o
  image_model: dall-e-3
  timeout_seconds: 60

ledger:
  default_starting_balance: 10
  stale_after_seconds: 300
  sweep_max_attempts: 5
"""


# ── Shared helpers ──────────────────────────────────────────────────────────

def get_daemon_pid():
    if PID_FILE.exists():
        try:
            return int(PID_FILE.read_text().strip())
        except ValueError:
            return None
    return None


# ── Init command (lives at top level, so defined here) ──────────────────────

@app.command("init")
def init_thinklab():
    """Initialize the ledger schema and local runtime folders."""
    console.print(f"[bold]Initializing ThinkLab runtime in {THINKLAB_DIR}...[/bold]")

    THINKLAB_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    if not CONFIG_FILE.exists():
        console.print("Creating default thinklab.yaml...")
        CONFIG_FILE.write_text(DEFAULT_CONFIG_YAML)

    try:
        init_db()
        console.print(f"[green]Database initialized: {describe_db()}[/green]")
    except Exception as e:
        console.print(f"[red]Failed to initialize database: {e}[/red]")
        raise typer.Exit(1)

    console.print("[green]ThinkLab initialized successfully.[/green]")


# ── Register submodule commands (import triggers decorator registration) ────

from . import daemon_cmds   # noqa: E402, F401
from . import account_cmds  # noqa: E402, F401
from . import ops_cmds      # noqa: E402, F401
