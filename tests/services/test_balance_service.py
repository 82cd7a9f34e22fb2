"""
Tests for the BalanceLedger.
"""

import threading
from decimal import Decimal

import pytest

from gull_ledger.errors import ValidationError
from gull_ledger.services.balance_service import BalanceLedger
from gull_ledger.stores.memory import InMemoryBalanceStore


def make_ledger(balance="1000", unlimited=False):
    store = InMemoryBalanceStore({1: Decimal(balance)})
    return store, BalanceLedger(store, 1, unlimited=unlimited)


class TestDeduct:

    def test_deduct_reduces_balance_and_adds_spent(self):
        store, ledger = make_ledger()
        assert ledger.deduct(Decimal("300")) is True
        assert ledger.balance == Decimal("700")
        assert store.get_total_spent(1) == Decimal("300")

    def test_deduct_without_spent_adjustment(self):
        store, ledger = make_ledger()
        ledger.deduct(Decimal("300"), adjust_spent=False)
        assert store.get_total_spent(1) == Decimal("0")

    def test_insufficient_balance_refused(self):
        _, ledger = make_ledger("100")
        assert ledger.deduct(Decimal("150")) is False
        assert ledger.balance == Decimal("100")

    def test_unlimited_may_go_negative(self):
        _, ledger = make_ledger("100", unlimited=True)
        assert ledger.deduct(Decimal("150")) is True
        assert ledger.balance == Decimal("-50")

    def test_negative_amount_rejected(self):
        _, ledger = make_ledger()
        with pytest.raises(ValidationError):
            ledger.deduct(Decimal("-1"))


class TestAdd:

    def test_add_lowers_spent_not_below_zero(self):
        store, ledger = make_ledger()
        ledger.deduct(Decimal("100"))
        ledger.add(Decimal("250"))
        assert ledger.balance == Decimal("1150")
        assert store.get_total_spent(1) == Decimal("0")

    def test_top_up_leaves_spent_alone(self):
        store, ledger = make_ledger()
        ledger.deduct(Decimal("100"))
        assert ledger.top_up(Decimal("500")) == Decimal("1400")
        assert store.get_total_spent(1) == Decimal("100")

    def test_zero_top_up_rejected(self):
        _, ledger = make_ledger()
        with pytest.raises(ValidationError):
            ledger.top_up(Decimal("0"))

    def test_has_sufficient(self):
        _, ledger = make_ledger("100")
        assert ledger.has_sufficient(Decimal("100"))
        assert not ledger.has_sufficient(Decimal("101"))


class TestConcurrency:

    def test_concurrent_deductions_never_overdraw(self):
        _, ledger = make_ledger("1000")
        results = []

        def worker():
            results.append(ledger.deduct(Decimal("10")))

        threads = [threading.Thread(target=worker) for _ in range(150)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 100
        assert ledger.balance == Decimal("0")

    def test_listeners_notified(self):
        store, ledger = make_ledger()
        seen = []
        unsubscribe = store.subscribe(lambda uid, bal: seen.append((uid, bal)))
        ledger.deduct(Decimal("1"))
        unsubscribe()
        ledger.deduct(Decimal("1"))
        assert seen == [(1, Decimal("999"))]
