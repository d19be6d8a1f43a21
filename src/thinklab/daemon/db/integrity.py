"""Database integrity checks for schema + accounting invariants."""

from __future__ import annotations

from ..utils.invariants import run_all_checks
from .connection import get_backend, get_db_connection
from .schema import REQUIRED_TABLES

# Checks that must pass before the daemon accepts traffic.
_STARTUP_GATES = {"no_negative_balances", "credits_conserved"}


def _table_names(conn) -> set[str]:
    if get_backend() == "sqlite":
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    else:
        rows = conn.execute(
            "SELECT table_name AS name FROM information_schema.tables WHERE table_schema = current_schema()"
        ).fetchall()
    return {row["name"] for row in rows}


def check_db_integrity() -> bool:
    """Run fast physical+logical checks used by daemon startup."""
    with get_db_connection() as conn:
        if get_backend() == "sqlite":
            quick = conn.execute("PRAGMA quick_check").fetchone()[0]
            if str(quick).lower() != "ok":
                return False

        table_names = _table_names(conn)
        if any(name not in table_names for name in REQUIRED_TABLES):
            return False

        for result in run_all_checks(conn):
            if result.name in _STARTUP_GATES and not result.passed:
                return False
    return True
