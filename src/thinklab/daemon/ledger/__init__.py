"""Ledger APIs for reserve/commit/refund credit accounting."""

from .models import (
    Account,
    ActionRecord,
    HistoryPage,
    RecordStatus,
    RefundInitiator,
    REFUNDABLE_STATES,
    TERMINAL_STATES,
)
from .replay import replay_account_balances

__all__ = [
    "Account",
    "ActionRecord",
    "HistoryPage",
    "RecordStatus",
    "RefundInitiator",
    "REFUNDABLE_STATES",
    "TERMINAL_STATES",
    "replay_account_balances",
]
