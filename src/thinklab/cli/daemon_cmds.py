"""Daemon lifecycle commands: start, stop, status."""

import os
import signal
import subprocess
import sys
import time

import httpx
import typer

from . import daemon_app, console, THINKLAB_DIR, PID_FILE, LOG_DIR, CONFIG_DIR, get_daemon_pid
from ..daemon.db import describe_db, init_db

DEFAULT_PORT = 9100


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _clear_pid_file() -> None:
    if PID_FILE.exists():
        PID_FILE.unlink()


def _probe(host: str, port: int, path: str) -> tuple[int, dict] | None:
    try:
        r = httpx.get(f"http://{host}:{port}{path}", timeout=3.0)
    except httpx.HTTPError:
        return None
    try:
        return r.status_code, r.json()
    except ValueError:
        return r.status_code, {}


@daemon_app.command("start")
def start_daemon(
    port: int = DEFAULT_PORT,
    host: str = "127.0.0.1",
    reload: bool = False,
    wait: float = typer.Option(10.0, help="Seconds to wait for /health before giving up"),
):
    """Start the ThinkLab daemon (uvicorn) in the background."""
    for d in (THINKLAB_DIR, LOG_DIR, CONFIG_DIR):
        d.mkdir(parents=True, exist_ok=True)

    pid = get_daemon_pid()
    if pid and _process_alive(pid):
        console.print(f"[red]Daemon already running (PID {pid})[/red]")
        return
    if pid:
        console.print("[yellow]Stale PID file found, removing...[/yellow]")
        _clear_pid_file()

    try:
        init_db()
    except Exception as exc:
        console.print(f"[red]Database init failed, daemon not started: {exc}[/red]")
        raise typer.Exit(1)

    env = os.environ.copy()
    env.setdefault("THINKLAB_LOG_DIR", str(LOG_DIR))
    env.setdefault("THINKLAB_CONFIG_DIR", str(CONFIG_DIR))

    cmd = [sys.executable, "-m", "uvicorn", "thinklab.daemon.app:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")

    console.print(f"[green]Starting ThinkLab daemon on {host}:{port}...[/green]")
    with open(LOG_DIR / "daemon.out", "a") as log_file:
        proc = subprocess.Popen(cmd, env=env, stdout=log_file, stderr=subprocess.STDOUT)
    PID_FILE.write_text(str(proc.pid))

    deadline = time.monotonic() + wait
    while time.monotonic() < deadline:
        if proc.poll() is not None:
            _clear_pid_file()
            console.print(f"[red]Daemon exited with code {proc.returncode}. See {LOG_DIR}/daemon.out[/red]")
            raise typer.Exit(1)
        if _probe(host, port, "/health"):
            break
        time.sleep(0.25)
    else:
        console.print("[yellow]Daemon did not answer /health yet; check the logs.[/yellow]")

    console.print(f"Daemon started with PID {proc.pid}")
    console.print(f"Logs: {LOG_DIR}/daemon.out")


@daemon_app.command("stop")
def stop_daemon():
    """Stop the ThinkLab daemon."""
    pid = get_daemon_pid()
    if not pid:
        console.print("[red]Daemon not running (PID file not found)[/red]")
        return

    if _process_alive(pid):
        os.kill(pid, signal.SIGTERM)
        console.print(f"[green]Stopped daemon (PID {pid})[/green]")
    else:
        console.print("[yellow]Daemon process not found, cleaning up PID file[/yellow]")
    _clear_pid_file()


@daemon_app.command("status")
def status_daemon(port: int = DEFAULT_PORT, host: str = "127.0.0.1"):
    """Show process state and the daemon's readiness report."""
    pid = get_daemon_pid()
    if not pid or not _process_alive(pid):
        console.print("[red]Daemon is NOT running[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Daemon is running (PID {pid})[/green]")
    console.print(f"Configuration: {CONFIG_DIR}")
    console.print(f"Database: {describe_db()}")

    probe = _probe(host, port, "/ready")
    if probe is None:
        console.print(f"[yellow]No answer on http://{host}:{port}/ready[/yellow]")
        return
    status_code, report = probe
    color = "green" if status_code == 200 else "red"
    console.print(f"Readiness: [{color}]{report.get('status', status_code)}[/{color}]")
    for alert in report.get("alerts", []):
        console.print(f"  {alert.get('severity', 'info').upper()}: {alert.get('message')}")
