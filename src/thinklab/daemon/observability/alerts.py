"""Operational alert synthesis for readiness and dashboards."""

from __future__ import annotations

from datetime import datetime, UTC, timedelta
import os

from ..db import get_db_connection
from ..utils.config_loader import config_loader
from ..utils.invariants import run_all_checks

# Invariants whose failure means the ledger itself is inconsistent.
CRITICAL_INVARIANTS = {
    "no_negative_balances",
    "credits_conserved",
    "no_orphaned_records",
}


def collect_active_alerts() -> list[dict]:
    """Collect active alerts from ledger state and invariant checks."""
    stale_threshold = int(os.getenv("THINKLAB_ALERT_STALE_RESERVATIONS", "1"))
    failed_ratio_threshold = float(os.getenv("THINKLAB_ALERT_REFUND_RATIO", "0.50"))
    window_minutes = int(os.getenv("THINKLAB_ALERT_WINDOW_MINUTES", "10"))
    settings = config_loader.ledger_settings()
    now = datetime.now(UTC)
    stale_cutoff = (now - timedelta(seconds=settings.stale_after_seconds)).isoformat(timespec="microseconds")
    window_cutoff = (now - timedelta(minutes=window_minutes)).isoformat(timespec="microseconds")

    alerts: list[dict] = []
    with get_db_connection() as conn:
        stale = conn.execute(
            """
            SELECT COUNT(*) AS c FROM action_records
            WHERE status IN ('RESERVED', 'FAILED') AND created_at < ?
            """,
            (stale_cutoff,),
        ).fetchone()
        stale_count = int(stale["c"] or 0)
        if stale_count >= stale_threshold:
            alerts.append(
                {
                    "id": "stale_reservations",
                    "severity": "warning",
                    "message": "Unresolved reservations older than the staleness threshold",
                    "value": stale_count,
                    "threshold": stale_threshold,
                    "stale_after_seconds": settings.stale_after_seconds,
                }
            )

        escalated = conn.execute(
            """
            SELECT record_id, account_id, sweep_attempts, error FROM action_records
            WHERE status IN ('RESERVED', 'FAILED') AND sweep_attempts >= ?
            ORDER BY created_at ASC
            LIMIT 50
            """,
            (settings.sweep_max_attempts,),
        ).fetchall()
        for row in escalated:
            alerts.append(
                {
                    "id": "reconciliation_required",
                    "severity": "critical",
                    "message": "Refund could not be completed; manual reconciliation required",
                    "record_id": row["record_id"],
                    "account_id": row["account_id"],
                    "attempts": int(row["sweep_attempts"] or 0),
                    "detail": row["error"],
                }
            )

        recent = conn.execute(
            """
            SELECT status, COUNT(*) AS c FROM action_records
            WHERE created_at >= ? AND status IN ('COMMITTED', 'REFUNDED')
            GROUP BY status
            """,
            (window_cutoff,),
        ).fetchall()
        recent_counts = {row["status"]: int(row["c"] or 0) for row in recent}
        recent_total = sum(recent_counts.values())
        if recent_total > 0:
            refund_ratio = recent_counts.get("REFUNDED", 0) / recent_total
            if refund_ratio >= failed_ratio_threshold:
                alerts.append(
                    {
                        "id": "high_refund_ratio",
                        "severity": "warning",
                        "message": "High provider failure ratio in recent window",
                        "value": round(refund_ratio, 4),
                        "threshold": failed_ratio_threshold,
                        "window_minutes": window_minutes,
                        "samples": recent_total,
                    }
                )

        for check in run_all_checks(conn):
            if check.passed:
                continue
            alerts.append(
                {
                    "id": f"invariant_{check.name}",
                    "severity": "critical" if check.name in CRITICAL_INVARIANTS else "warning",
                    "message": f"Invariant failed: {check.name}",
                    "detail": check.detail,
                }
            )

    return alerts


def summarize_alerts(alerts: list[dict]) -> dict[str, int]:
    summary = {"critical": 0, "warning": 0, "info": 0, "total": 0}
    for alert in alerts:
        sev = str(alert.get("severity", "info")).lower()
        if sev not in summary:
            sev = "info"
        summary[sev] += 1
        summary["total"] += 1
    return summary
