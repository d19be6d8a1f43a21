"""Concurrency-safe credit ledger: accounts, grants and action records.

Every public operation here is one short transaction that either fully
applies or has no effect. Balance is only ever changed by a conditional
UPDATE inside such a transaction, never by read-then-write from callers.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, UTC
import json
import uuid
from typing import Any, Iterator

from ..db import get_db_connection
from ..errors import AccountInactive, AccountNotFound, InsufficientBalance, InvalidStateTransition
from ..pricing import ActionKind, parse_action_kind
from ..utils.logging_config import StructuredLogger
from .models import (
    Account,
    ActionRecord,
    HistoryPage,
    RecordStatus,
    RefundInitiator,
    decode_cursor,
    encode_cursor,
)

logger = StructuredLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


def _utc_now_iso() -> str:
    # Fixed-width microsecond timestamps sort lexicographically.
    return datetime.now(UTC).isoformat(timespec="microseconds")


def _json_dump(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=True, default=str)


def _json_or_none(text: str | None):
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def _row_to_account(row) -> Account:
    return Account(
        account_id=row["account_id"],
        balance=int(row["balance"]),
        active=bool(row["active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deactivated_at=row["deactivated_at"],
    )


def _row_to_record(row) -> ActionRecord:
    return ActionRecord(
        record_id=row["record_id"],
        account_id=row["account_id"],
        action_kind=row["action_kind"],
        cost=int(row["cost"]),
        status=RecordStatus(row["status"]),
        created_at=row["created_at"],
        input=_json_or_none(row["input_json"]),
        output=_json_or_none(row["output_json"]),
        error=row["error"],
        project_id=row["project_id"],
        metadata=_json_or_none(row["metadata_json"]),
        sweep_attempts=int(row["sweep_attempts"] or 0),
        resolved_at=row["resolved_at"],
    )


@contextmanager
def _transaction() -> Iterator[Any]:
    """Open a write transaction; commit on success, roll back on any error."""
    with get_db_connection() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()


def _fetch_account(conn, account_id: str):
    return conn.execute(
        """
        SELECT account_id, balance, active, created_at, updated_at, deactivated_at
        FROM accounts WHERE account_id = ?
        """,
        (account_id,),
    ).fetchone()


def _fetch_record(conn, record_id: str):
    return conn.execute("SELECT * FROM action_records WHERE record_id = ?", (record_id,)).fetchone()


# ---- accounts ----


def provision_account(account_id: str, *, starting_balance: int, reason: str = "Starting credits") -> tuple[Account, bool]:
    """Create the account once. Returns (account, created)."""
    account_id = (account_id or "").strip()
    if not account_id:
        raise ValueError("account_id must be a non-empty string")
    if starting_balance < 0:
        raise ValueError("starting_balance must be >= 0")

    now = _utc_now_iso()
    with _transaction() as conn:
        cur = conn.execute(
            """
            INSERT INTO accounts (account_id, balance, active, created_at, updated_at)
            VALUES (?, ?, 1, ?, ?)
            ON CONFLICT (account_id) DO NOTHING
            """,
            (account_id, starting_balance, now, now),
        )
        created = cur.rowcount > 0
        if created and starting_balance > 0:
            conn.execute(
                """
                INSERT INTO credit_grants (grant_id, account_id, amount, source, reason, created_at)
                VALUES (?, ?, ?, 'provision', ?, ?)
                """,
                (str(uuid.uuid4()), account_id, starting_balance, reason, now),
            )
        account = _row_to_account(_fetch_account(conn, account_id))

    if created:
        logger.info("Account provisioned", account_id=account_id, starting_balance=starting_balance)
    return account, created


def grant_credits(account_id: str, amount: int, *, reason: str, source: str = "admin_grant") -> int:
    """Administrative credit grant. Returns the balance after the grant."""
    if int(amount) <= 0:
        raise ValueError("amount must be a positive integer")

    with _transaction() as conn:
        cur = conn.execute(
            "UPDATE accounts SET balance = balance + ?, updated_at = ? WHERE account_id = ?",
            (int(amount), _utc_now_iso(), account_id),
        )
        if cur.rowcount == 0:
            raise AccountNotFound(account_id)
        conn.execute(
            """
            INSERT INTO credit_grants (grant_id, account_id, amount, source, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (str(uuid.uuid4()), account_id, int(amount), source, reason, _utc_now_iso()),
        )
        balance = int(_fetch_account(conn, account_id)["balance"])

    logger.info("Credits granted", account_id=account_id, amount=int(amount), source=source, balance=balance)
    return balance


def set_account_active(account_id: str, active: bool) -> Account:
    now = _utc_now_iso()
    with _transaction() as conn:
        cur = conn.execute(
            "UPDATE accounts SET active = ?, updated_at = ?, deactivated_at = ? WHERE account_id = ?",
            (1 if active else 0, now, None if active else now, account_id),
        )
        if cur.rowcount == 0:
            raise AccountNotFound(account_id)
        account = _row_to_account(_fetch_account(conn, account_id))

    logger.info("Account state changed", account_id=account_id, active=active)
    return account


def deactivate_account(account_id: str) -> Account:
    return set_account_active(account_id, False)


def get_account(account_id: str) -> Account | None:
    with get_db_connection() as conn:
        row = _fetch_account(conn, account_id)
    return _row_to_account(row) if row else None


def get_balance(account_id: str) -> int:
    account = get_account(account_id)
    if account is None:
        raise AccountNotFound(account_id)
    return account.balance


# ---- reserve / commit / refund ----


def reserve(
    account_id: str,
    action_kind: ActionKind | str,
    cost: int,
    *,
    input: Any = None,
    project_id: str | None = None,
    metadata: dict | None = None,
) -> ActionRecord:
    """Debit `cost` and insert a RESERVED record as one atomic unit.

    The check-and-decrement is a single conditional UPDATE, so two
    concurrent reservations can never both spend the last `cost` credits.
    """
    kind = parse_action_kind(action_kind)
    if int(cost) <= 0:
        raise ValueError("cost must be a positive integer")
    cost = int(cost)

    record_id = str(uuid.uuid4())
    now = _utc_now_iso()
    with _transaction() as conn:
        account_row = _fetch_account(conn, account_id)
        if not account_row:
            raise AccountNotFound(account_id)
        if not account_row["active"]:
            raise AccountInactive(account_id)

        cur = conn.execute(
            """
            UPDATE accounts
            SET balance = balance - ?, updated_at = ?
            WHERE account_id = ? AND balance >= ?
            """,
            (cost, now, account_id, cost),
        )
        if cur.rowcount == 0:
            available = int(_fetch_account(conn, account_id)["balance"])
            raise InsufficientBalance(account_id, required=cost, available=available)

        conn.execute(
            """
            INSERT INTO action_records (
                record_id, account_id, action_kind, cost, status, project_id,
                input_json, metadata_json, sweep_attempts, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (
                record_id,
                account_id,
                str(kind),
                cost,
                RecordStatus.RESERVED,
                project_id,
                _json_dump(input),
                _json_dump(metadata),
                now,
            ),
        )
        record = _row_to_record(_fetch_record(conn, record_id))

    logger.info("Credits reserved", account_id=account_id, record_id=record_id, action_kind=str(kind), cost=cost)
    return record


def _invalid_transition(conn, record_id: str, target: RecordStatus) -> InvalidStateTransition:
    row = _fetch_record(conn, record_id)
    error = InvalidStateTransition(
        record_id,
        current=row["status"] if row else None,
        target=str(target),
        account_id=row["account_id"] if row else None,
    )
    logger.critical(
        "Invalid action record transition",
        record_id=record_id,
        account_id=error.account_id,
        current=error.current,
        target=error.target,
    )
    return error


def commit(record_id: str, output: Any) -> ActionRecord:
    """RESERVED -> COMMITTED, attaching the provider output."""
    now = _utc_now_iso()
    with _transaction() as conn:
        cur = conn.execute(
            """
            UPDATE action_records
            SET status = ?, output_json = ?, resolved_at = ?
            WHERE record_id = ? AND status = ?
            """,
            (RecordStatus.COMMITTED, _json_dump(output), now, record_id, RecordStatus.RESERVED),
        )
        if cur.rowcount == 0:
            raise _invalid_transition(conn, record_id, RecordStatus.COMMITTED)
        record = _row_to_record(_fetch_record(conn, record_id))

    logger.info("Action committed", account_id=record.account_id, record_id=record_id, cost=record.cost)
    return record


def mark_failed(record_id: str, error: str) -> ActionRecord:
    """RESERVED -> FAILED. Records the cause; the refund follows separately."""
    with _transaction() as conn:
        cur = conn.execute(
            "UPDATE action_records SET status = ?, error = ? WHERE record_id = ? AND status = ?",
            (RecordStatus.FAILED, error, record_id, RecordStatus.RESERVED),
        )
        if cur.rowcount == 0:
            raise _invalid_transition(conn, record_id, RecordStatus.FAILED)
        record = _row_to_record(_fetch_record(conn, record_id))

    logger.warning("Action failed", account_id=record.account_id, record_id=record_id, error=error)
    return record


def refund(
    record_id: str,
    *,
    reason: str,
    initiated_by: RefundInitiator = RefundInitiator.GATEWAY,
) -> bool:
    """RESERVED|FAILED -> REFUNDED and re-credit the cost, atomically.

    Returns True when the refund was applied. A sweep-initiated refund of an
    already resolved record is a no-op returning False; a gateway-initiated
    one raises InvalidStateTransition.
    """
    now = _utc_now_iso()
    with _transaction() as conn:
        row = _fetch_record(conn, record_id)
        if row is not None:
            cur = conn.execute(
                """
                UPDATE action_records
                SET status = ?, error = COALESCE(error, ?), resolved_at = ?
                WHERE record_id = ? AND status IN (?, ?)
                """,
                (
                    RecordStatus.REFUNDED,
                    reason,
                    now,
                    record_id,
                    RecordStatus.RESERVED,
                    RecordStatus.FAILED,
                ),
            )
            applied = cur.rowcount > 0
        else:
            applied = False

        if not applied:
            if initiated_by == RefundInitiator.SWEEP and row is not None:
                return False
            raise _invalid_transition(conn, record_id, RecordStatus.REFUNDED)

        conn.execute(
            "UPDATE accounts SET balance = balance + ?, updated_at = ? WHERE account_id = ?",
            (int(row["cost"]), now, row["account_id"]),
        )

    logger.info(
        "Action refunded",
        account_id=row["account_id"],
        record_id=record_id,
        cost=int(row["cost"]),
        initiated_by=str(initiated_by),
        reason=reason,
    )
    return True


# ---- queries ----


def get_action_record(record_id: str) -> ActionRecord | None:
    with get_db_connection() as conn:
        row = _fetch_record(conn, record_id)
    return _row_to_record(row) if row else None


def history(
    account_id: str,
    limit: int = DEFAULT_HISTORY_LIMIT,
    cursor: str | None = None,
    *,
    max_limit: int = MAX_HISTORY_LIMIT,
) -> HistoryPage:
    """Newest-first page of the account's action records.

    Pass the returned `next_cursor` back to continue; None means the end.
    """
    limit = max(1, min(int(limit), max_limit))
    params: list[Any] = [account_id]
    where = "account_id = ?"
    if cursor:
        created_at, last_id = decode_cursor(cursor)
        where += " AND (created_at < ? OR (created_at = ? AND record_id < ?))"
        params.extend([created_at, created_at, last_id])
    params.append(limit + 1)

    with get_db_connection() as conn:
        if not _fetch_account(conn, account_id):
            raise AccountNotFound(account_id)
        rows = conn.execute(
            f"""
            SELECT * FROM action_records
            WHERE {where}
            ORDER BY created_at DESC, record_id DESC
            LIMIT ?
            """,
            tuple(params),
        ).fetchall()

    records = [_row_to_record(row) for row in rows[:limit]]
    next_cursor = None
    if len(rows) > limit and records:
        last = records[-1]
        next_cursor = encode_cursor(last.created_at, last.record_id)
    return HistoryPage(records=records, next_cursor=next_cursor)


def list_stale_records(older_than: str, *, limit: int = 500) -> list[ActionRecord]:
    """Unresolved (RESERVED/FAILED) records created before `older_than`, oldest first."""
    with get_db_connection() as conn:
        rows = conn.execute(
            """
            SELECT * FROM action_records
            WHERE status IN (?, ?) AND created_at < ?
            ORDER BY created_at ASC, record_id ASC
            LIMIT ?
            """,
            (RecordStatus.RESERVED, RecordStatus.FAILED, older_than, limit),
        ).fetchall()
    return [_row_to_record(row) for row in rows]


def note_sweep_attempt(record_id: str, error: str) -> int:
    """Count a failed sweep refund against an unresolved record."""
    with _transaction() as conn:
        conn.execute(
            """
            UPDATE action_records
            SET sweep_attempts = sweep_attempts + 1, error = ?
            WHERE record_id = ? AND status IN (?, ?)
            """,
            (error, record_id, RecordStatus.RESERVED, RecordStatus.FAILED),
        )
        row = conn.execute(
            "SELECT sweep_attempts FROM action_records WHERE record_id = ?",
            (record_id,),
        ).fetchone()
    return int(row["sweep_attempts"]) if row else 0


def list_records_needing_reconciliation(min_attempts: int) -> list[ActionRecord]:
    with get_db_connection() as conn:
        rows = conn.execute(
            """
            SELECT * FROM action_records
            WHERE status IN (?, ?) AND sweep_attempts >= ?
            ORDER BY created_at ASC
            """,
            (RecordStatus.RESERVED, RecordStatus.FAILED, min_attempts),
        ).fetchall()
    return [_row_to_record(row) for row in rows]
