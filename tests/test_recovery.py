"""Reconciliation sweep for reservations abandoned by crashes."""

from datetime import datetime, timedelta, UTC
from unittest.mock import patch

from thinklab.daemon.ledger import RecordStatus, store
from thinklab.daemon.pricing import ActionKind
from thinklab.daemon.runtime import reconcile_stale_reservations


def _later(hours=1):
    return datetime.now(UTC) + timedelta(hours=hours)


class TestReconcileStaleReservations:
    def test_refunds_stale_reserved_and_failed(self, ledger_db):
        store.provision_account("sweep", starting_balance=30)
        reserved = store.reserve("sweep", ActionKind.TEXT_GENERATION, 5)
        failed = store.reserve("sweep", ActionKind.TEXT_GENERATION, 5)
        store.mark_failed(failed.record_id, "worker crashed")
        committed = store.reserve("sweep", ActionKind.TEXT_GENERATION, 5)
        store.commit(committed.record_id, {"content": "ok"})
        assert store.get_balance("sweep") == 15

        summary = reconcile_stale_reservations(stale_after_seconds=60, now=_later())

        assert summary == {"scanned": 2, "refunded": 2, "skipped": 0, "errors": 0, "escalated": []}
        assert store.get_balance("sweep") == 25
        assert store.get_action_record(reserved.record_id).status == RecordStatus.REFUNDED
        assert store.get_action_record(failed.record_id).status == RecordStatus.REFUNDED
        assert store.get_action_record(committed.record_id).status == RecordStatus.COMMITTED

    def test_fresh_reservations_are_left_alone(self, ledger_db):
        store.provision_account("fresh", starting_balance=10)
        record = store.reserve("fresh", ActionKind.TEXT_GENERATION, 5)

        summary = reconcile_stale_reservations(stale_after_seconds=300)

        assert summary["scanned"] == 0
        assert store.get_action_record(record.record_id).status == RecordStatus.RESERVED
        assert store.get_balance("fresh") == 5

    def test_second_sweep_is_a_no_op(self, ledger_db):
        store.provision_account("twice", starting_balance=10)
        store.reserve("twice", ActionKind.TEXT_GENERATION, 5)

        first = reconcile_stale_reservations(stale_after_seconds=60, now=_later())
        second = reconcile_stale_reservations(stale_after_seconds=60, now=_later())

        assert first["refunded"] == 1
        assert second["scanned"] == 0
        assert second["refunded"] == 0
        assert store.get_balance("twice") == 10

    def test_record_resolved_mid_sweep_is_skipped(self, ledger_db):
        store.provision_account("racer", starting_balance=10)
        record = store.reserve("racer", ActionKind.TEXT_GENERATION, 5)
        listed = store.list_stale_records(_later().isoformat(timespec="microseconds"))
        store.commit(record.record_id, {"content": "late but fine"})

        with patch("thinklab.daemon.ledger.store.list_stale_records", return_value=listed):
            summary = reconcile_stale_reservations(stale_after_seconds=60, now=_later())

        assert summary["skipped"] == 1
        assert summary["refunded"] == 0
        assert store.get_action_record(record.record_id).status == RecordStatus.COMMITTED
        assert store.get_balance("racer") == 5

    def test_persistent_failure_escalates(self, ledger_db):
        store.provision_account("stuck", starting_balance=10)
        record = store.reserve("stuck", ActionKind.TEXT_GENERATION, 5)

        with patch(
            "thinklab.daemon.ledger.store.refund", side_effect=RuntimeError("disk full")
        ) as refund_mock:
            first = reconcile_stale_reservations(stale_after_seconds=60, max_attempts=2, now=_later())
            second = reconcile_stale_reservations(stale_after_seconds=60, max_attempts=2, now=_later())
            third = reconcile_stale_reservations(stale_after_seconds=60, max_attempts=2, now=_later())

        assert first["errors"] == 1
        assert first["escalated"] == []
        assert second["escalated"] == [record.record_id]
        # Escalated records are reported but no longer retried inline.
        assert third["errors"] == 0
        assert third["escalated"] == [record.record_id]
        assert refund_mock.call_count == 2

        stuck = store.get_action_record(record.record_id)
        assert stuck.sweep_attempts == 2
        assert "disk full" in stuck.error
        assert stuck.status == RecordStatus.RESERVED

    def test_include_escalated_retries(self, ledger_db):
        store.provision_account("retry", starting_balance=10)
        record = store.reserve("retry", ActionKind.TEXT_GENERATION, 5)
        store.note_sweep_attempt(record.record_id, "earlier failure")

        skipped = reconcile_stale_reservations(stale_after_seconds=60, max_attempts=1, now=_later())
        assert skipped["escalated"] == [record.record_id]
        assert store.get_balance("retry") == 5

        forced = reconcile_stale_reservations(
            stale_after_seconds=60, max_attempts=1, include_escalated=True, now=_later()
        )
        assert forced["refunded"] == 1
        assert store.get_balance("retry") == 10

    def test_defaults_come_from_config(self, ledger_db, default_config):
        store.provision_account("cfg", starting_balance=10)
        store.reserve("cfg", ActionKind.TEXT_GENERATION, 5)

        assert reconcile_stale_reservations(now=_later(hours=0))["scanned"] == 0
        assert reconcile_stale_reservations(now=_later(hours=1))["refunded"] == 1
