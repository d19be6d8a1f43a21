from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional

from ..db import get_db_connection
from .config_loader import config_loader


def usage_analytics(account_id: Optional[str] = None) -> Dict[str, Any]:
    """Aggregate ledger usage, globally or for one account."""
    stale_after = config_loader.ledger_settings().stale_after_seconds
    stale_cutoff = (datetime.now(UTC) - timedelta(seconds=stale_after)).isoformat(timespec="microseconds")

    account_filter = ""
    params: tuple = ()
    if account_id is not None:
        account_filter = " AND account_id = ?"
        params = (account_id,)

    with get_db_connection() as conn:
        accounts = conn.execute(
            "SELECT COUNT(*) AS total, "
            "COALESCE(SUM(CASE WHEN active = 1 THEN 1 ELSE 0 END), 0) AS active, "
            "COALESCE(SUM(balance), 0) AS balance "
            "FROM accounts WHERE 1 = 1" + account_filter,
            params,
        ).fetchone()
        total_granted = conn.execute(
            "SELECT COALESCE(SUM(amount), 0) AS s FROM credit_grants WHERE 1 = 1" + account_filter,
            params,
        ).fetchone()["s"]

        status_rows = conn.execute(
            "SELECT status, COUNT(*) AS c, COALESCE(SUM(cost), 0) AS credits "
            "FROM action_records WHERE 1 = 1" + account_filter + " GROUP BY status",
            params,
        ).fetchall()
        by_status = {row["status"]: int(row["c"]) for row in status_rows}
        credits_by_status = {row["status"]: int(row["credits"]) for row in status_rows}

        kind_rows = conn.execute(
            "SELECT action_kind, status, COUNT(*) AS c, COALESCE(SUM(cost), 0) AS credits "
            "FROM action_records WHERE 1 = 1" + account_filter + " GROUP BY action_kind, status",
            params,
        ).fetchall()
        by_kind: Dict[str, Dict[str, int]] = {}
        for row in kind_rows:
            entry = by_kind.setdefault(
                row["action_kind"],
                {"api_calls": 0, "credits_consumed": 0, "refunded": 0},
            )
            if row["status"] == "COMMITTED":
                entry["api_calls"] += int(row["c"])
                entry["credits_consumed"] += int(row["credits"])
            elif row["status"] == "REFUNDED":
                entry["refunded"] += int(row["c"])

        stale = conn.execute(
            "SELECT COUNT(*) AS c FROM action_records "
            "WHERE status IN ('RESERVED', 'FAILED') AND created_at < ?" + account_filter,
            (stale_cutoff, *params),
        ).fetchone()["c"]

    return {
        "account_id": account_id,
        "total_accounts": int(accounts["total"] or 0),
        "active_accounts": int(accounts["active"] or 0),
        "total_balance": int(accounts["balance"] or 0),
        "total_granted": int(total_granted or 0),
        "records_by_status": by_status,
        "api_calls": by_status.get("COMMITTED", 0),
        "credits_consumed": credits_by_status.get("COMMITTED", 0),
        "credits_refunded": credits_by_status.get("REFUNDED", 0),
        "credits_in_flight": credits_by_status.get("RESERVED", 0) + credits_by_status.get("FAILED", 0),
        "by_action_kind": by_kind,
        "stale_reservations": int(stale or 0),
        "generated_at": datetime.now(UTC).isoformat(),
    }
