"""Replay grants and action records to verify every account balance."""

from __future__ import annotations

from typing import Any

from ..db import get_db_connection
from ..utils.invariants import conservation_rows


def replay_account_balances(account_id: str | None = None) -> dict[str, Any]:
    """Recompute each balance as granted minus debited and compare.

    Debited covers RESERVED, FAILED and COMMITTED records; refunded records
    have already been re-credited and contribute nothing.
    """
    with get_db_connection() as conn:
        rows = conservation_rows(conn)

    accounts = []
    mismatched = 0
    for row in rows:
        if account_id is not None and row["account_id"] != account_id:
            continue
        expected = row["granted"] - row["debited"]
        ok = expected == row["balance"]
        if not ok:
            mismatched += 1
        accounts.append(
            {
                "account_id": row["account_id"],
                "balance": row["balance"],
                "expected_balance": expected,
                "granted": row["granted"],
                "debited": row["debited"],
                "ok": ok,
            }
        )

    return {"ok": mismatched == 0, "accounts_checked": len(accounts), "mismatched": mismatched, "accounts": accounts}
