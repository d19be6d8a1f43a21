"""Invariant checks, balance replay, alerts and readiness."""

from thinklab.daemon.db import check_db_integrity, get_db_connection
from thinklab.daemon.ledger import replay_account_balances, store
from thinklab.daemon.observability import collect_active_alerts, readiness_report, summarize_alerts
from thinklab.daemon.pricing import ActionKind
from thinklab.daemon.utils.invariants import run_all_checks


def _failed(stale_after_seconds=None):
    with get_db_connection() as conn:
        return {c.name for c in run_all_checks(conn, stale_after_seconds) if not c.passed}


def _tamper(sql, params=()):
    with get_db_connection() as conn:
        conn.execute(sql, params)
        conn.commit()


class TestInvariantChecks:
    def test_clean_ledger_passes(self, ledger_db):
        store.provision_account("ok", starting_balance=10)
        record = store.reserve("ok", ActionKind.TEXT_GENERATION, 5)
        store.commit(record.record_id, {"content": "x"})

        assert _failed(stale_after_seconds=300) == set()
        assert check_db_integrity() is True

    def test_balance_drift_breaks_conservation(self, ledger_db):
        store.provision_account("drift", starting_balance=10)
        _tamper("UPDATE accounts SET balance = 12 WHERE account_id = ?", ("drift",))

        assert "credits_conserved" in _failed()
        assert check_db_integrity() is False

        replay = replay_account_balances()
        assert replay["ok"] is False
        assert replay["mismatched"] == 1
        assert replay["accounts"][0]["expected_balance"] == 10

    def test_terminal_record_without_resolution_time(self, ledger_db):
        store.provision_account("ts", starting_balance=10)
        record = store.reserve("ts", ActionKind.TEXT_GENERATION, 5)
        store.commit(record.record_id, {"content": "x"})
        _tamper("UPDATE action_records SET resolved_at = NULL WHERE record_id = ?", (record.record_id,))

        assert _failed() == {"resolution_timestamps"}

    def test_stale_reservation_flagged(self, ledger_db):
        store.provision_account("slow", starting_balance=10)
        store.reserve("slow", ActionKind.TEXT_GENERATION, 5)
        _tamper("UPDATE action_records SET created_at = '2000-01-01T00:00:00.000000+00:00'")

        assert _failed(stale_after_seconds=300) == {"no_stale_reservations"}
        assert _failed() == set()


class TestAlertsAndReadiness:
    def test_reconciliation_required_is_critical(self, ledger_db):
        store.provision_account("stuck", starting_balance=10)
        record = store.reserve("stuck", ActionKind.TEXT_GENERATION, 5)
        for _ in range(5):
            store.note_sweep_attempt(record.record_id, "disk full")

        alerts = collect_active_alerts()
        ids = [a["id"] for a in alerts]
        assert "reconciliation_required" in ids
        assert summarize_alerts(alerts)["critical"] >= 1

        ready, payload = readiness_report()
        assert ready is False
        assert payload["status"] == "not_ready"

    def test_stale_reservations_warn(self, ledger_db):
        store.provision_account("late", starting_balance=10)
        store.reserve("late", ActionKind.TEXT_GENERATION, 5)
        _tamper("UPDATE action_records SET created_at = '2000-01-01T00:00:00.000000+00:00'")

        alerts = collect_active_alerts()
        stale = [a for a in alerts if a["id"] == "stale_reservations"]
        assert stale and stale[0]["severity"] == "warning"
        assert readiness_report()[0] is True

    def test_summarize_alerts(self):
        summary = summarize_alerts(
            [{"severity": "critical"}, {"severity": "warning"}, {"severity": "odd"}]
        )
        assert summary == {"critical": 1, "warning": 1, "info": 1, "total": 3}
