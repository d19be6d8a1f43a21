"""Ledger value types."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class RecordStatus(StrEnum):
    RESERVED = "RESERVED"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


# Statuses a refund may start from.
REFUNDABLE_STATES = frozenset({RecordStatus.RESERVED, RecordStatus.FAILED})
TERMINAL_STATES = frozenset({RecordStatus.COMMITTED, RecordStatus.REFUNDED})


class RefundInitiator(StrEnum):
    GATEWAY = "gateway"
    SWEEP = "sweep"


@dataclass(frozen=True)
class Account:
    account_id: str
    balance: int
    active: bool
    created_at: str
    updated_at: str
    deactivated_at: str | None = None


@dataclass(frozen=True)
class ActionRecord:
    record_id: str
    account_id: str
    action_kind: str
    cost: int
    status: RecordStatus
    created_at: str
    input: Any = None
    output: Any = None
    error: str | None = None
    project_id: str | None = None
    metadata: dict | None = None
    sweep_attempts: int = 0
    resolved_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_dict(self, *, include_payloads: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.record_id,
            "account_id": self.account_id,
            "action_kind": self.action_kind,
            "cost": self.cost,
            "status": str(self.status),
            "project_id": self.project_id,
            "error": self.error,
            "created_at": self.created_at,
            "resolved_at": self.resolved_at,
        }
        if include_payloads:
            data["input"] = self.input
            data["output"] = self.output
            data["metadata"] = self.metadata
        return data


@dataclass(frozen=True)
class HistoryPage:
    records: list[ActionRecord] = field(default_factory=list)
    next_cursor: str | None = None


def encode_cursor(created_at: str, record_id: str) -> str:
    raw = f"{created_at}|{record_id}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> tuple[str, str]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        created_at, record_id = raw.split("|", 1)
    except (ValueError, UnicodeError) as exc:
        raise ValueError(f"Malformed history cursor: {cursor!r}") from exc
    if not created_at or not record_id:
        raise ValueError(f"Malformed history cursor: {cursor!r}")
    return created_at, record_id
