"""Tests for janus.budget."""
import unittest
from datetime import datetime, timezone

from fakes import temp_store

from janus.budget import BudgetLedger, month_key, monthly_limit, spent_this_month


class TestMonthlySpend(unittest.TestCase):
    def test_month_key(self):
        self.assertEqual(month_key(datetime(2026, 3, 9, tzinfo=timezone.utc)), "2026-03")

    def test_only_current_month_entries_count(self):
        store = temp_store(self)
        store.write_session_costs("a", {"sessionId": "a", "entries": [
            {"timestamp": "2026-03-01T00:00:00+00:00", "cost": 1.5},
            {"timestamp": "2026-02-28T23:59:59+00:00", "cost": 100},
        ]})
        store.write_session_costs("b", {"sessionId": "b", "entries": [
            {"timestamp": "2026-03-15T10:00:00+00:00", "cost": 0.5},
        ]})
        now = datetime(2026, 3, 20, tzinfo=timezone.utc)
        self.assertAlmostEqual(spent_this_month(store, now), 2.0)

    def test_override_wins(self):
        store = temp_store(self)
        self.assertEqual(monthly_limit(store, 150), 150.0)
        store.write_budget_override(20)
        self.assertEqual(monthly_limit(store, 150), 20.0)


class TestBudgetLedger(unittest.TestCase):
    def test_charge_decrements_and_may_go_negative(self):
        ledger = BudgetLedger(monthly_limit_usd=1.0, remaining_usd=0.05, session_id="s")
        ledger.charge(0.02, model="m", model_key="k", operation="council-advisor")
        self.assertAlmostEqual(ledger.remaining_usd, 0.03)
        with self.assertLogs("janus.budget", level="WARNING"):
            ledger.charge(0.05, model="m", model_key="k")
        self.assertLess(ledger.remaining_usd, 0)

    def test_negative_cost_is_not_a_credit(self):
        ledger = BudgetLedger(monthly_limit_usd=1.0, remaining_usd=1.0)
        ledger.charge(-5)
        self.assertEqual(ledger.remaining_usd, 1.0)

    def test_status_clamps_for_display(self):
        ledger = BudgetLedger(monthly_limit_usd=10.0, remaining_usd=-2.0)
        status = ledger.status()
        self.assertEqual(status["remaining"], 0.0)
        self.assertEqual(status["spent"], 12.0)
        self.assertEqual(status["percentageUsed"], 100.0)

    def test_session_costs_totals(self):
        ledger = BudgetLedger(monthly_limit_usd=10.0, remaining_usd=10.0, session_id="s")
        ledger.charge(0.25, model="a", operation="council-advisor")
        ledger.charge(0.75, model="b", operation="council-synthesis")
        ledger.charge(0.5, model="a", operation="council-advisor")
        costs = ledger.session_costs()
        self.assertAlmostEqual(costs["totalCost"], 1.5)
        self.assertAlmostEqual(costs["byModel"]["a"], 0.75)
        self.assertAlmostEqual(costs["byOperation"]["council-synthesis"], 0.75)

    def test_persist_then_from_store(self):
        store = temp_store(self)
        ledger = BudgetLedger.from_store(store, 5.0, session_id="s1")
        self.assertEqual(ledger.remaining_usd, 5.0)
        ledger.charge(1.25, model="m", model_key="k")
        ledger.persist(store)
        reloaded = BudgetLedger.from_store(store, 5.0, session_id="s2")
        self.assertAlmostEqual(reloaded.remaining_usd, 3.75)

    def test_reused_session_accumulates_spend(self):
        store = temp_store(self)
        first = BudgetLedger.from_store(store, 100.0, session_id="S")
        first.charge(30.0, model="m", model_key="k", operation="executor-plan")
        first.persist(store)

        second = BudgetLedger.from_store(store, 100.0, session_id="S")
        self.assertAlmostEqual(second.remaining_usd, 70.0)
        second.charge(5.0, model="m", model_key="k", operation="council-advisor")
        second.persist(store)
        second.persist(store)

        reloaded = BudgetLedger.from_store(store, 100.0, session_id="S")
        self.assertAlmostEqual(reloaded.remaining_usd, 65.0)
        costs = store.read_session_costs("S")
        self.assertEqual(len(costs["entries"]), 2)
        self.assertAlmostEqual(costs["totalCost"], 35.0)
        self.assertAlmostEqual(costs["byOperation"]["executor-plan"], 30.0)

    def test_persist_without_session_is_noop(self):
        store = temp_store(self)
        ledger = BudgetLedger(monthly_limit_usd=1.0, remaining_usd=1.0)
        ledger.charge(0.1)
        self.assertIsNone(ledger.persist(store))
        self.assertEqual(store.list_session_costs(), [])


if __name__ == "__main__":
    unittest.main()
