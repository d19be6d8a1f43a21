"""Concurrent reservations against one account: no double-spend, credits conserved."""

import random
import threading
from concurrent.futures import ThreadPoolExecutor

from thinklab.daemon.db import get_db_connection
from thinklab.daemon.errors import InsufficientBalance
from thinklab.daemon.ledger import RecordStatus, replay_account_balances, store
from thinklab.daemon.pricing import ActionKind
from thinklab.daemon.utils.invariants import run_all_checks


def _race(n, fn):
    barrier = threading.Barrier(n)

    def _worker(i):
        barrier.wait()
        return fn(i)

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(_worker, range(n)))


class TestNoDoubleSpend:
    def test_two_reservations_race_for_last_credits(self, ledger_db):
        store.provision_account("race", starting_balance=5)

        def _reserve(_):
            try:
                return store.reserve("race", ActionKind.TEXT_GENERATION, 5)
            except InsufficientBalance:
                return None

        results = _race(2, _reserve)
        winners = [r for r in results if r is not None]

        assert len(winners) == 1
        assert store.get_balance("race") == 0
        records = store.history("race").records
        assert [r.status for r in records] == [RecordStatus.RESERVED]

    def test_many_reservations_bounded_by_balance(self, ledger_db):
        balance, cost, workers = 23, 5, 12
        store.provision_account("crowd", starting_balance=balance)

        def _reserve(_):
            try:
                store.reserve("crowd", ActionKind.TEXT_GENERATION, cost)
                return True
            except InsufficientBalance:
                return False

        results = _race(workers, _reserve)

        assert sum(results) == balance // cost
        assert store.get_balance("crowd") == balance - (balance // cost) * cost


class TestConservation:
    def test_random_interleavings_conserve_credits(self, ledger_db):
        rng = random.Random(1234)
        store.provision_account("cons", starting_balance=60)
        store.grant_credits("cons", 40, reason="top-up")
        kinds = list(ActionKind)

        def _lifecycle(i):
            local = random.Random(rng.random() + i)
            kind = local.choice(kinds)
            try:
                record = store.reserve("cons", kind, local.randint(1, 9))
            except InsufficientBalance:
                return "denied"
            outcome = local.choice(["commit", "refund", "fail-refund", "leave"])
            if outcome == "commit":
                store.commit(record.record_id, {"ok": True})
            elif outcome == "refund":
                store.refund(record.record_id, reason="provider error")
            elif outcome == "fail-refund":
                store.mark_failed(record.record_id, "timeout")
                store.refund(record.record_id, reason="timeout")
            return outcome

        _race(16, _lifecycle)

        with get_db_connection() as conn:
            debited = conn.execute(
                """
                SELECT COALESCE(SUM(cost), 0) AS s FROM action_records
                WHERE account_id = ? AND status IN ('RESERVED', 'FAILED', 'COMMITTED')
                """,
                ("cons",),
            ).fetchone()["s"]
            failed = [c for c in run_all_checks(conn) if not c.passed]

        balance = store.get_balance("cons")
        assert balance >= 0
        assert balance + int(debited) == 100
        assert failed == []
        assert replay_account_balances("cons")["ok"] is True
