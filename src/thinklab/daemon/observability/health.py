"""Liveness and readiness reports for `/health` and `/ready`."""

from __future__ import annotations

from datetime import datetime, UTC
import os

from thinklab import __version__
from ..db import describe_db, get_backend, get_db_connection
from ..utils.config_loader import config_loader
from ..utils.invariants import run_all_checks
from .alerts import CRITICAL_INVARIANTS, collect_active_alerts, summarize_alerts


def _now() -> str:
    return datetime.now(UTC).isoformat()


def liveness_report() -> dict:
    """Process is up; touches nothing external."""
    return {"status": "ok", "version": __version__, "ts": _now()}


def _database_check() -> dict:
    try:
        with get_db_connection() as conn:
            conn.execute("SELECT 1").fetchone()
            failed = [c for c in run_all_checks(conn) if not c.passed]
    except Exception as exc:
        return {"ok": False, "backend": get_backend(), "error": str(exc)}

    return {
        "ok": not any(c.name in CRITICAL_INVARIANTS for c in failed),
        "backend": get_backend(),
        "target": describe_db(),
        "failed_invariants": [{"name": c.name, "detail": c.detail} for c in failed],
    }


def _config_check() -> dict:
    try:
        config = config_loader.get_config()
    except Exception as exc:
        return {"ok": False, "error": str(exc)}
    # A missing provider key degrades every action but does not block reads.
    return {
        "ok": True,
        "action_kinds": len(config.pricing),
        "provider_key_configured": bool(os.getenv(config.provider.api_key_env)),
        "stale_after_seconds": config.ledger.stale_after_seconds,
    }


def readiness_report() -> tuple[bool, dict]:
    """Ready when the ledger is reachable and consistent and config is valid.

    Critical alerts (e.g. records awaiting manual reconciliation) also mark
    the daemon not ready so orchestrators surface them.
    """
    checks = {"database": _database_check(), "config": _config_check()}

    alerts: list[dict] = []
    if "error" not in checks["database"]:
        alerts = collect_active_alerts()
    summary = summarize_alerts(alerts)
    checks["alerts"] = summary

    ready = checks["database"]["ok"] and checks["config"]["ok"] and summary["critical"] == 0
    payload = {
        "ready": ready,
        "status": "ready" if ready else "not_ready",
        "version": __version__,
        "ts": _now(),
        "checks": checks,
        "alerts": alerts,
    }
    return ready, payload
