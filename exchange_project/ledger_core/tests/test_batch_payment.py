from decimal import Decimal
from unittest import mock
from django.test import TestCase
from ..exceptions import NotFoundError, StateError, ValidationError
from ..models import AuditLog, Payment
from ..services.balance import get_balance
from ..services.batch_payment import (get_pending_transactions, preview_batch_payment,
                                      process_batch_payment)
from ..services.payment import add_payment, cancel_transaction, complete_transaction
from .utils import make_currencies, make_tenant, make_transaction


class BatchPaymentTests(TestCase):
    """One incoming amount spread over several open transactions."""

    def setUp(self):
        self.ccy = make_currencies()
        self.company, self.branch, self.user = make_tenant("sabzevar", self.ccy["USD"], username="teller")
        self.oldest = make_transaction(self.company, self.branch, self.ccy["USD"], "1000", reference="B-1")
        self.middle = make_transaction(self.company, self.branch, self.ccy["USD"], "500", reference="B-2")
        self.newest = make_transaction(self.company, self.branch, self.ccy["USD"], "300", reference="B-3")
        self.ids = [self.newest.pk, self.oldest.pk, self.middle.pk]

    def amounts(self, preview):
        return {a.transaction.pk: a.amount for a in preview.allocations}

    def test_fifo_fills_oldest_first(self):
        preview = preview_batch_payment(self.company, self.ids, "1200", "USD", strategy="FIFO")

        self.assertEqual([a.transaction.pk for a in preview.allocations],
                         [self.oldest.pk, self.middle.pk, self.newest.pk])
        self.assertEqual([a.amount for a in preview.allocations],
                         [Decimal("1000"), Decimal("200"), Decimal("0")])
        self.assertEqual([a.is_full_payment for a in preview.allocations], [True, False, False])
        self.assertEqual(preview.transactions_paid, 2)
        self.assertEqual(preview.unallocated, Decimal("0"))
        # preview writes nothing
        self.assertFalse(Payment.objects.exists())

    def test_fifo_leaves_excess_unallocated(self):
        preview = preview_batch_payment(self.company, self.ids, "2000", "USD")
        self.assertEqual(preview.total_allocated, Decimal("1800"))
        self.assertEqual(preview.unallocated, Decimal("200"))
        self.assertTrue(all(a.is_full_payment for a in preview.allocations))

    def test_proportional_split_follows_remaining_balances(self):
        preview = preview_batch_payment(self.company, self.ids, "900", "USD", strategy="PROPORTIONAL")

        self.assertEqual(self.amounts(preview), {
            self.oldest.pk: Decimal("500"),
            self.middle.pk: Decimal("250"),
            self.newest.pk: Decimal("150"),
        })
        self.assertEqual(preview.unallocated, Decimal("0"))

    def test_proportional_rounds_down_to_the_cent(self):
        txs = [make_transaction(self.company, self.branch, self.ccy["EUR"], "300") for _ in range(3)]

        preview = preview_batch_payment(
            self.company, [tx.pk for tx in txs], "100", "EUR", strategy="PROPORTIONAL")

        self.assertEqual([a.amount for a in preview.allocations], [Decimal("33.33")] * 3)
        self.assertEqual(preview.unallocated, Decimal("0.01"))

    def test_cross_currency_batch_converts_each_allocation(self):
        first = make_transaction(self.company, self.branch, self.ccy["IRR"], "42050000")
        second = make_transaction(self.company, self.branch, self.ccy["IRR"], "84100000")

        result = process_batch_payment(
            self.company, [first.pk, second.pk], "1000", "CAD",
            exchange_rate="84100", user=self.user)

        self.assertEqual([p.amount for p in result.payments], [Decimal("500"), Decimal("500")])
        self.assertEqual([p.amount_in_base for p in result.payments],
                         [Decimal("42050000"), Decimal("42050000")])
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.remaining_balance, Decimal("0"))
        self.assertEqual(second.remaining_balance, Decimal("42050000"))
        self.assertEqual(get_balance(self.company, self.branch, "CAD").balance, Decimal("1000"))

    def test_process_records_one_payment_per_allocation(self):
        result = process_batch_payment(
            self.company, self.ids, "1200", "USD", notes="Friday run", user=self.user)

        self.assertEqual(result.payments_created, 2)
        self.assertEqual(result.total_paid, Decimal("1200"))
        self.assertIsNotNone(result.processed_at)
        self.oldest.refresh_from_db()
        self.middle.refresh_from_db()
        self.newest.refresh_from_db()
        self.assertEqual(self.oldest.remaining_balance, Decimal("0"))
        self.assertEqual(self.middle.remaining_balance, Decimal("300"))
        self.assertEqual(self.newest.payment_status, "OPEN")
        # completion stays explicit
        self.assertEqual(self.oldest.payment_status, "PARTIAL")
        complete_transaction(self.oldest.pk, company=self.company)

        self.assertEqual(
            set(Payment.objects.values_list("notes", flat=True)), {"Batch payment: Friday run"})
        self.assertEqual(get_balance(self.company, self.branch, "USD").balance, Decimal("1200"))
        entry = AuditLog.objects.get(action="batch_payment")
        self.assertEqual(Decimal(entry.changes["total_paid"]), Decimal("1200"))

    def test_invalid_details_record_nothing(self):
        with self.assertRaises(ValidationError):
            process_batch_payment(
                self.company, self.ids, "1200", "USD", method="BANK_TRANSFER", details={})
        self.assertFalse(Payment.objects.exists())

    def test_failed_allocation_rolls_back_the_whole_batch(self):
        made = []

        def second_one_fails(*args, **kwargs):
            if made:
                raise StateError("Transaction is CANCELLED; no more payments allowed")
            made.append(add_payment(*args, **kwargs))
            return made[0]

        with mock.patch("ledger_core.services.batch_payment.add_payment", side_effect=second_one_fails):
            with self.assertRaises(StateError):
                process_batch_payment(self.company, self.ids, "1200", "USD")

        self.assertEqual(len(made), 1)
        self.assertFalse(Payment.objects.exists())
        self.assertFalse(AuditLog.objects.filter(action__in=("add_payment", "batch_payment")).exists())
        self.oldest.refresh_from_db()
        self.assertEqual(self.oldest.remaining_balance, Decimal("1000"))
        self.assertEqual(get_balance(self.company, self.branch, "USD").balance, Decimal("0"))

    def test_ineligible_transactions_are_skipped(self):
        single = make_transaction(self.company, self.branch, self.ccy["USD"], "50", partial=False)
        cancel_transaction(self.newest.pk, "client left", company=self.company)

        preview = preview_batch_payment(
            self.company, [self.oldest.pk, self.newest.pk, single.pk], "100", "USD")

        self.assertEqual([a.transaction.pk for a in preview.allocations], [self.oldest.pk])
        self.assertEqual(sorted(preview.skipped), sorted([self.newest.pk, single.pk]))
        with self.assertRaises(StateError):
            preview_batch_payment(self.company, [single.pk], "100", "USD")

    def test_batch_input_is_validated(self):
        irr = make_transaction(self.company, self.branch, self.ccy["IRR"], "1000000")
        other, other_branch, _ = make_tenant("torbat", self.ccy["USD"])
        foreign = make_transaction(other, other_branch, self.ccy["USD"], "100")

        with self.assertRaises(ValidationError):
            preview_batch_payment(self.company, [], "100", "USD")
        with self.assertRaises(ValidationError):
            preview_batch_payment(self.company, ["abc"], "100", "USD")
        with self.assertRaises(ValidationError):
            preview_batch_payment(self.company, self.ids, 100.0, "USD")
        with self.assertRaises(ValidationError):
            preview_batch_payment(self.company, self.ids, "100", "USD", strategy="CUSTOM")
        with self.assertRaises(ValidationError):
            preview_batch_payment(self.company, [self.oldest.pk, irr.pk], "100", "USD")
        with self.assertRaises(ValidationError):
            # cross-currency needs a rate
            preview_batch_payment(self.company, self.ids, "100", "CAD")
        with self.assertRaises(NotFoundError):
            preview_batch_payment(self.company, [self.oldest.pk, foreign.pk], "100", "USD")

    def test_nothing_to_pay_is_a_state_error(self):
        process_batch_payment(self.company, self.ids, "1800", "USD")
        with self.assertRaises(StateError):
            process_batch_payment(self.company, self.ids, "10", "USD")
        self.assertEqual(Payment.objects.count(), 3)

    def test_pending_transactions_oldest_first(self):
        make_transaction(self.company, self.branch, self.ccy["USD"], "50", partial=False)
        cancel_transaction(self.middle.pk, "void", company=self.company)

        pending = get_pending_transactions(self.company)
        self.assertEqual([tx.pk for tx in pending], [self.oldest.pk, self.newest.pk])
        self.assertEqual(get_pending_transactions(self.company, currency="EUR"), [])
