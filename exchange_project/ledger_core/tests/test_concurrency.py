import threading
from functools import partial
from decimal import Decimal
from unittest import mock, skipUnless

from django.db import OperationalError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase

from ..exceptions import ConcurrencyConflict, LedgerError, NotFoundError, OverpaymentError
from ..models import CashBalance, Payment, Transaction
from ..services import locking
from ..services.balance import apply_adjustment
from ..services.payment import add_payment
from ..services.settlement import auto_settle, execute_settlement, open_obligation
from .utils import make_currencies, make_tenant, make_transaction


def locked_queryset(error):
    qs = mock.Mock()
    qs.model = Transaction
    qs.select_for_update.return_value.get.side_effect = error
    qs.select_for_update.return_value.order_by.side_effect = error
    return qs


class LockErrorTranslationTests(SimpleTestCase):
    def test_lock_timeout_on_one_row_is_a_conflict(self):
        qs = locked_queryset(OperationalError("canceling statement due to lock timeout"))
        with self.assertRaises(ConcurrencyConflict) as ctx:
            locking.lock_one(qs, 7, "Transaction")
        self.assertTrue(ctx.exception.retryable)
        self.assertIsInstance(ctx.exception.__cause__, OperationalError)
        qs.select_for_update.assert_called_once_with(of=("self",))

    def test_missing_row_is_not_found(self):
        qs = locked_queryset(Transaction.DoesNotExist())
        with self.assertRaises(NotFoundError) as ctx:
            locking.lock_one(qs, 7, "Transaction")
        self.assertEqual(ctx.exception.field, "transaction_id")

    def test_deadlock_on_a_row_set_is_a_conflict(self):
        qs = locked_queryset(OperationalError("deadlock detected"))
        with self.assertRaises(ConcurrencyConflict):
            locking.lock_rows(qs)
        qs.select_for_update.return_value.order_by.assert_called_once_with("pk")


class SettlementLockOrderTests(TestCase):
    def setUp(self):
        ccy = make_currencies()
        self.company, _, _ = make_tenant("birjand", ccy["USD"])
        self.locked = []

    def spy(self, queryset):
        rows = locking.lock_rows(queryset)
        self.locked.append([o.pk for o in rows])
        return rows

    def test_auto_settle_locks_credit_and_candidates_in_pk_order(self):
        first = open_obligation(self.company, "OUTGOING", "USD", "100", "1")
        incoming = open_obligation(self.company, "INCOMING", "USD", "250", "1")
        last = open_obligation(self.company, "OUTGOING", "USD", "100", "1")

        with mock.patch("ledger_core.services.settlement.lock_rows", side_effect=self.spy):
            auto_settle(incoming.pk, strategy="LIFO", company=self.company)

        self.assertEqual(self.locked, [[first.pk, incoming.pk, last.pk]])

    def test_execute_settlement_locks_lower_pk_first(self):
        incoming = open_obligation(self.company, "INCOMING", "USD", "100", "1")
        outgoing = open_obligation(self.company, "OUTGOING", "USD", "100", "1")

        with mock.patch("ledger_core.services.settlement.lock_rows", side_effect=self.spy):
            execute_settlement(outgoing.pk, incoming.pk, "40", company=self.company)
            execute_settlement(outgoing.pk, incoming.pk, "10", company=self.company)

        self.assertEqual(self.locked, [[incoming.pk, outgoing.pk]] * 2)


def run_together(*calls):
    """Start every call at the same instant on its own connection; collect results."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(i, call):
        try:
            barrier.wait()
            results[i] = call()
        except LedgerError as exc:
            results[i] = exc
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


@skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class RowLockRaceTests(TransactionTestCase):
    def setUp(self):
        ccy = make_currencies()
        self.company, self.branch, _ = make_tenant("nishapur", ccy["USD"])
        self.tx = make_transaction(self.company, self.branch, ccy["USD"], "1000")

    def test_concurrent_drawdowns_cannot_overpay(self):
        pay = partial(add_payment, self.tx.pk, "600", "USD", company=self.company)

        results = run_together(pay, pay)

        self.assertEqual(sum(isinstance(r, Payment) for r in results), 1)
        self.assertEqual(sum(isinstance(r, OverpaymentError) for r in results), 1)
        self.tx.refresh_from_db()
        self.assertEqual(self.tx.total_paid, Decimal("600"))
        self.assertEqual(self.tx.remaining_balance, Decimal("400"))
        self.assertEqual(CashBalance.objects.get(company=self.company).balance, Decimal("600"))

    def test_concurrent_drawdowns_both_land_when_they_fit(self):
        pay = partial(add_payment, self.tx.pk, "300", "USD", company=self.company)

        results = run_together(pay, pay, pay)

        self.assertTrue(all(isinstance(r, Payment) for r in results), results)
        self.tx.refresh_from_db()
        self.assertEqual(self.tx.total_paid, Decimal("900"))
        self.assertEqual(self.tx.payments.count(), 3)

    def test_concurrent_adjustments_are_not_lost(self):
        adjust = partial(apply_adjustment, self.company, self.branch, "USD", "10", "float")

        results = run_together(*[adjust] * 5)

        self.assertFalse([r for r in results if isinstance(r, LedgerError)])
        row = CashBalance.objects.get(company=self.company)
        self.assertEqual(row.balance, Decimal("50"))
        self.assertEqual(row.manual_adjustment, Decimal("50"))
