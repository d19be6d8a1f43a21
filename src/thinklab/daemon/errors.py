"""Ledger error taxonomy.

Caller-facing errors (unknown kind, bad input, insufficient balance,
provider failure) are returned to the HTTP layer as typed results. Invariant
violations (`InvalidStateTransition`) and `ReconciliationRequired` are
internal and surface as 5xx.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for every ledger/gateway failure."""

    code = "ledger_error"
    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class UnknownActionKind(LedgerError):
    code = "unknown_action_kind"
    status_code = 400

    def __init__(self, action_kind: str):
        super().__init__(f"Unknown action kind: {action_kind!r}", action_kind=action_kind)
        self.action_kind = action_kind


class InvalidActionInput(LedgerError):
    code = "invalid_action_input"
    status_code = 422

    def __init__(self, action_kind: str, reason: str):
        super().__init__(f"Invalid input for {action_kind}: {reason}", action_kind=action_kind)
        self.action_kind = action_kind
        self.reason = reason


class AccountNotFound(LedgerError):
    code = "account_not_found"
    status_code = 404

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id!r} not found", account_id=account_id)
        self.account_id = account_id


class AccountInactive(LedgerError):
    code = "account_inactive"
    status_code = 423

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id!r} is deactivated", account_id=account_id)
        self.account_id = account_id


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"
    status_code = 402

    def __init__(self, account_id: str, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}.",
            account_id=account_id,
            required=required,
            available=available,
        )
        self.account_id = account_id
        self.required = required
        self.available = available

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update({"required": self.required, "available": self.available})
        return payload


class ProviderFailure(LedgerError):
    """The external capability call failed; the reservation was refunded."""

    code = "provider_failure"
    status_code = 502

    def __init__(self, message: str, *, action_kind: str | None = None, status: int | None = None):
        super().__init__(message, action_kind=action_kind, provider_status=status)
        self.action_kind = action_kind
        self.status = status

    def to_payload(self) -> dict[str, Any]:
        # Provider internals stay out of caller-facing bodies.
        return {"error": self.code, "detail": "AI provider request failed; no credits were charged"}


class InvalidStateTransition(LedgerError):
    code = "invalid_state_transition"
    status_code = 500

    def __init__(
        self,
        record_id: str,
        *,
        current: str | None,
        target: str,
        account_id: str | None = None,
    ):
        super().__init__(
            f"Action record {record_id} cannot move from {current or 'MISSING'} to {target}",
            record_id=record_id,
            current=current,
            target=target,
            account_id=account_id,
        )
        self.record_id = record_id
        self.current = current
        self.target = target
        self.account_id = account_id

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": "Internal accounting error"}


class ReconciliationRequired(LedgerError):
    """A reserved record could not be resolved automatically."""

    code = "reconciliation_required"
    status_code = 500

    def __init__(self, record_id: str, *, account_id: str | None, attempts: int, last_error: str | None):
        super().__init__(
            f"Action record {record_id} requires manual reconciliation after {attempts} attempts",
            record_id=record_id,
            account_id=account_id,
            attempts=attempts,
            last_error=last_error,
        )
        self.record_id = record_id
        self.account_id = account_id
        self.attempts = attempts
        self.last_error = last_error

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": "Internal accounting error"}
