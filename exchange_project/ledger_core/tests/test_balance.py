from decimal import Decimal
from io import StringIO
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.core.management import call_command
from django.test import TestCase
from ..exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from ..models import Adjustment, CashBalance, Company, Transaction
from ..services import cache
from ..services.balance import (_write, adjustment_history, apply_adjustment, compute_fold,
                                get_balance, list_balances, recompute_balance)
from ..services.payment import add_payment, cancel_payment
from ..tasks import recompute_all_balances
from .utils import make_currencies, make_tenant, make_transaction


class CashBalanceTests(TestCase):
    def setUp(self):
        self.ccy = make_currencies()
        self.company, self.branch, self.user = make_tenant("mashhad", self.ccy["USD"], username="boss")
        self.tx = make_transaction(self.company, self.branch, self.ccy["USD"], "5000")

    def test_balance_is_payments_plus_adjustments(self):
        add_payment(self.tx.pk, "300", "USD", company=self.company)
        add_payment(self.tx.pk, "200", "USD", company=self.company)
        apply_adjustment(self.company, self.branch, "USD", "-25.50", "counted short", user=self.user)

        row = get_balance(self.company, self.branch, "USD")
        self.assertEqual(row.auto_calculated_balance, Decimal("500"))
        self.assertEqual(row.manual_adjustment, Decimal("-25.50"))
        self.assertEqual(row.balance, Decimal("474.50"))
        self.assertEqual(compute_fold(self.company, self.branch, self.ccy["USD"]),
                         (Decimal("500"), Decimal("-25.50")))

    def test_recompute_twice_changes_nothing(self):
        add_payment(self.tx.pk, "300", "USD", company=self.company)
        first = recompute_balance(self.company, self.branch, "USD")
        second = recompute_balance(self.company, self.branch, "USD")

        self.assertEqual(first.balance, second.balance)
        self.assertEqual(first.version, second.version)
        self.assertEqual(CashBalance.objects.for_company(self.company).count(), 1)

    def test_cancelled_payments_do_not_count(self):
        payment = add_payment(self.tx.pk, "300", "USD", company=self.company)
        cancel_payment(payment.pk, "void", company=self.company)
        row = recompute_balance(self.company, self.branch, "USD")
        self.assertEqual(row.balance, Decimal("0"))

    def test_adjustment_records_snapshot(self):
        apply_adjustment(self.company, self.branch, "USD", "100", "opening float", user=self.user)
        adj = apply_adjustment(self.company, self.branch, "USD", "-40", "bank run", user=self.user)

        self.assertEqual(adj.balance_before, Decimal("100"))
        self.assertEqual(adj.balance_after, Decimal("60"))
        self.assertEqual(adj.performed_by, self.user)
        self.assertEqual(adj.cash_balance.balance, Decimal("60"))
        self.assertEqual(
            [a.reason for a in adjustment_history(self.company, currency="USD")],
            ["bank run", "opening float"],
        )

    def test_bad_adjustments_are_rejected_before_any_write(self):
        cases = [
            ("0", "zero"),
            ("abc", "garbage"),
            (1.5, "float"),
            ("Infinity", "infinite"),
            ("10", ""),
            ("10", "   "),
        ]
        for delta, reason in cases:
            with self.subTest(delta=delta, reason=reason):
                with self.assertRaises(ValidationError):
                    apply_adjustment(self.company, self.branch, "USD", delta, reason)
        self.assertFalse(Adjustment.objects.exists())
        self.assertFalse(CashBalance.objects.exists())

    def test_adjustments_are_immutable(self):
        adj = apply_adjustment(self.company, self.branch, "USD", "10", "float")
        adj.reason = "rewritten"
        with self.assertRaises(DjangoValidationError):
            adj.save()
        with self.assertRaises(DjangoValidationError), transaction.atomic():
            adj.delete()

    def test_branch_of_another_company_is_not_found(self):
        _, other_branch, _ = make_tenant("tabriz", self.ccy["USD"])
        with self.assertRaises(NotFoundError):
            apply_adjustment(self.company, other_branch, "USD", "10", "wrong branch")

    def test_company_level_drawer_is_separate(self):
        apply_adjustment(self.company, None, "USD", "1000", "vault")
        apply_adjustment(self.company, self.branch, "USD", "10", "till")

        self.assertEqual(get_balance(self.company, None, "USD").balance, Decimal("1000"))
        self.assertEqual(get_balance(self.company, self.branch, "USD").balance, Decimal("10"))
        self.assertEqual(len(list_balances(self.company)), 2)
        self.assertEqual(len(list_balances(self.company, branch=self.branch.pk)), 1)

    def test_read_goes_through_cache_and_writes_evict(self):
        apply_adjustment(self.company, self.branch, "USD", "10", "till")
        get_balance(self.company, self.branch, "USD")
        self.assertIsNotNone(cache.get_cached(self.company.pk, self.branch.pk, "USD"))

        apply_adjustment(self.company, self.branch, "USD", "5", "tip jar")
        self.assertIsNone(cache.get_cached(self.company.pk, self.branch.pk, "USD"))
        self.assertEqual(get_balance(self.company, self.branch, "USD").balance, Decimal("15"))

    def test_stale_version_is_a_conflict(self):
        apply_adjustment(self.company, self.branch, "USD", "10", "till")
        stale = CashBalance.objects.get(company=self.company, branch=self.branch)
        CashBalance.objects.filter(pk=stale.pk).update(version=stale.version + 1)

        with self.assertRaises(ConcurrencyConflict):
            _write(stale, stale.auto_calculated_balance, Decimal("99"))

    def test_drift_is_found_and_corrected(self):
        add_payment(self.tx.pk, "300", "USD", company=self.company)
        CashBalance.objects.filter(company=self.company).update(balance=Decimal("999"))

        self.assertEqual(recompute_all_balances(self.company.pk), 1)
        row = CashBalance.objects.get(company=self.company)
        self.assertEqual(row.balance, Decimal("300"))
        # second pass finds nothing
        self.assertEqual(recompute_all_balances(self.company.pk), 0)

    def test_recompute_command(self):
        apply_adjustment(self.company, self.branch, "USD", "10", "till")
        CashBalance.objects.filter(company=self.company).update(balance=Decimal("7"))
        out = StringIO()

        call_command("recompute_balances", company="mashhad", stdout=out)

        self.assertIn("1 balance row(s) corrected", out.getvalue())
        self.assertEqual(CashBalance.objects.get(company=self.company).balance, Decimal("10"))

    def test_demo_tenant_command(self):
        call_command("create_demo_tenant", stdout=StringIO())

        company = Company.objects.get(name="Demo Exchange")
        branch = company.branches.get()
        self.assertEqual(get_balance(company, branch, "CAD").balance, Decimal("10000"))
        tx = Transaction.objects.get(company=company, reference="DEMO-0001")
        self.assertEqual(tx.remaining_balance, Decimal("27950000"))
