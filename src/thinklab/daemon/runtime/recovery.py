"""Reconciliation sweep for reservations left unresolved by crashes."""

from __future__ import annotations

from datetime import datetime, timedelta, UTC

from ..errors import ReconciliationRequired
from ..ledger import store
from ..ledger.models import RefundInitiator
from ..utils.config_loader import config_loader
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)

SWEEP_REFUND_REASON = "Recovered stale reservation"


def reconcile_stale_reservations(
    *,
    stale_after_seconds: int | None = None,
    max_attempts: int | None = None,
    include_escalated: bool = False,
    now: datetime | None = None,
    limit: int = 500,
) -> dict:
    """Refund RESERVED/FAILED records older than the staleness threshold.

    Safe to run concurrently with live traffic and with itself: a record that
    was resolved in the meantime is skipped. Records whose refund has failed
    `max_attempts` times are escalated as ReconciliationRequired and are not
    retried again unless `include_escalated` is set.
    """
    settings = config_loader.ledger_settings()
    stale_after = settings.stale_after_seconds if stale_after_seconds is None else stale_after_seconds
    attempts_cap = settings.sweep_max_attempts if max_attempts is None else max_attempts
    cutoff = (now or datetime.now(UTC)) - timedelta(seconds=stale_after)

    records = store.list_stale_records(cutoff.isoformat(timespec="microseconds"), limit=limit)

    refunded = 0
    skipped = 0
    errors = 0
    escalations: list[ReconciliationRequired] = []

    for record in records:
        if record.sweep_attempts >= attempts_cap and not include_escalated:
            escalations.append(
                ReconciliationRequired(
                    record.record_id,
                    account_id=record.account_id,
                    attempts=record.sweep_attempts,
                    last_error=record.error,
                )
            )
            continue

        try:
            applied = store.refund(
                record.record_id,
                reason=SWEEP_REFUND_REASON,
                initiated_by=RefundInitiator.SWEEP,
            )
        except Exception as exc:
            errors += 1
            log = logger.bind(record_id=record.record_id, account_id=record.account_id)
            try:
                attempts = store.note_sweep_attempt(record.record_id, f"Sweep refund failed: {exc}")
            except Exception as note_exc:
                log.error("Unable to record sweep attempt", error=str(note_exc))
                attempts = record.sweep_attempts + 1

            log.error("Sweep refund failed", attempts=attempts, error=str(exc))
            if attempts >= attempts_cap:
                log.critical("Reconciliation required", attempts=attempts, last_error=str(exc))
                escalations.append(
                    ReconciliationRequired(
                        record.record_id,
                        account_id=record.account_id,
                        attempts=attempts,
                        last_error=str(exc),
                    )
                )
            continue

        if applied:
            refunded += 1
        else:
            skipped += 1

    summary = {
        "scanned": len(records),
        "refunded": refunded,
        "skipped": skipped,
        "errors": errors,
        "escalated": [e.record_id for e in escalations],
    }
    if refunded or errors or escalations:
        logger.warning("Reconciliation sweep completed", **summary)
    return summary
