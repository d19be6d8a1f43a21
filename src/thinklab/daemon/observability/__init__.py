"""Observability helpers: alerts and health reports."""

from .alerts import collect_active_alerts, summarize_alerts
from .health import liveness_report, readiness_report

__all__ = [
    "collect_active_alerts",
    "summarize_alerts",
    "liveness_report",
    "readiness_report",
]
