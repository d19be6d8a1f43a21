"""
ThinkLab invariant layer: ledger integrity verification.

All checks are deterministic queries against the ledger database.
No mutations. No side effects.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Optional

# Statuses whose cost is currently debited from the owning account.
DEBITED_STATUSES = ("RESERVED", "FAILED", "COMMITTED")


@dataclass
class InvariantResult:
    name: str
    passed: bool
    detail: Optional[str] = None


def conservation_rows(conn) -> list[dict]:
    """Per-account balance, granted total and currently debited total."""
    rows = conn.execute(
        """
        SELECT a.account_id, a.balance,
               COALESCE((SELECT SUM(g.amount) FROM credit_grants g WHERE g.account_id = a.account_id), 0) AS granted,
               COALESCE((SELECT SUM(r.cost) FROM action_records r
                         WHERE r.account_id = a.account_id
                           AND r.status IN ('RESERVED', 'FAILED', 'COMMITTED')), 0) AS debited
        FROM accounts a
        ORDER BY a.account_id ASC
        """
    ).fetchall()
    return [
        {
            "account_id": r["account_id"],
            "balance": int(r["balance"]),
            "granted": int(r["granted"]),
            "debited": int(r["debited"]),
        }
        for r in rows
    ]


def check_no_negative_balances(conn) -> InvariantResult:
    """INV-1: No account balance is negative."""
    rows = conn.execute("SELECT account_id, balance FROM accounts WHERE balance < 0").fetchall()
    if rows:
        violations = [f"{r['account_id']}: balance={r['balance']}" for r in rows]
        return InvariantResult(
            name="no_negative_balances",
            passed=False,
            detail=f"Violations: {'; '.join(violations)}",
        )
    return InvariantResult(name="no_negative_balances", passed=True)


def check_credits_conserved(conn) -> InvariantResult:
    """INV-2: balance + debited action costs == total granted, per account."""
    mismatches = [
        f"{r['account_id']}: balance={r['balance']} + debited={r['debited']} != granted={r['granted']}"
        for r in conservation_rows(conn)
        if r["balance"] + r["debited"] != r["granted"]
    ]
    if mismatches:
        return InvariantResult(
            name="credits_conserved",
            passed=False,
            detail=f"Mismatches: {'; '.join(mismatches)}",
        )
    return InvariantResult(name="credits_conserved", passed=True)


def check_resolution_timestamps(conn) -> InvariantResult:
    """INV-3: terminal records carry resolved_at, unresolved ones do not."""
    rows = conn.execute(
        """
        SELECT record_id, status FROM action_records
        WHERE (status IN ('COMMITTED', 'REFUNDED') AND resolved_at IS NULL)
           OR (status = 'RESERVED' AND resolved_at IS NOT NULL)
        """
    ).fetchall()
    if rows:
        violations = [f"{r['record_id']} ({r['status']})" for r in rows]
        return InvariantResult(
            name="resolution_timestamps",
            passed=False,
            detail=f"Violations: {'; '.join(violations)}",
        )
    return InvariantResult(name="resolution_timestamps", passed=True)


def check_no_orphaned_records(conn) -> InvariantResult:
    """INV-4: every action record and grant belongs to an existing account."""
    rows = conn.execute(
        """
        SELECT r.record_id AS ref FROM action_records r
        LEFT JOIN accounts a ON a.account_id = r.account_id
        WHERE a.account_id IS NULL
        UNION ALL
        SELECT g.grant_id AS ref FROM credit_grants g
        LEFT JOIN accounts a ON a.account_id = g.account_id
        WHERE a.account_id IS NULL
        """
    ).fetchall()
    if rows:
        return InvariantResult(
            name="no_orphaned_records",
            passed=False,
            detail=f"Orphans: {', '.join(r['ref'] for r in rows)}",
        )
    return InvariantResult(name="no_orphaned_records", passed=True)


def check_no_stale_reservations(conn, stale_after_seconds: int) -> InvariantResult:
    """INV-5: no RESERVED/FAILED record older than the staleness threshold.

    Best-effort: a failing result means the reconciliation sweep has work
    to do, not that the ledger is inconsistent.
    """
    cutoff = (datetime.now(UTC) - timedelta(seconds=stale_after_seconds)).isoformat(timespec="microseconds")
    row = conn.execute(
        "SELECT COUNT(*) AS c FROM action_records WHERE status IN ('RESERVED', 'FAILED') AND created_at < ?",
        (cutoff,),
    ).fetchone()
    stale = int(row["c"] or 0)
    if stale:
        return InvariantResult(
            name="no_stale_reservations",
            passed=False,
            detail=f"{stale} unresolved records older than {stale_after_seconds}s",
        )
    return InvariantResult(name="no_stale_reservations", passed=True)


def run_all_checks(conn, stale_after_seconds: Optional[int] = None) -> list[InvariantResult]:
    """Run all invariant checks and return results."""
    results = [
        check_no_negative_balances(conn),
        check_credits_conserved(conn),
        check_resolution_timestamps(conn),
        check_no_orphaned_records(conn),
    ]
    if stale_after_seconds is not None:
        results.append(check_no_stale_reservations(conn, stale_after_seconds))
    return results
